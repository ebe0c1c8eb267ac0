"""Helpers for carrying work product from one agent to the next."""

from typing import Iterable, List

from .agent import AgentResponse
from .task import Artifact, HandoffPayload

MAX_CARRIED_OUTPUT_CHARS = 2000


def format_artifact(artifact: Artifact) -> str:
    artifact_type = artifact.type.value if hasattr(artifact.type, "value") else artifact.type
    return f"=== {str(artifact_type).upper()}: {artifact.name} ===\n{artifact.content}\n"


def format_artifacts(artifacts: Iterable[Artifact]) -> List[str]:
    return [format_artifact(a) for a in artifacts]


def update_handoff_with_response(handoff: HandoffPayload, response: AgentResponse) -> HandoffPayload:
    """Merge a response's output and artifacts into a handoff payload.

    Output is truncated so long transcripts don't snowball across handoffs.
    Returns a new payload; the original is left untouched.
    """
    context = handoff.context
    if response.output:
        excerpt = response.output[:MAX_CARRIED_OUTPUT_CHARS]
        context = f"{context}\n\nPrevious output:\n{excerpt}" if context else f"Previous output:\n{excerpt}"

    return handoff.model_copy(update={
        "context": context,
        "artifacts": [*handoff.artifacts, *format_artifacts(response.artifacts)],
    })
