"""Rich logging with structured task context."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
RESET = "\033[0m"


class OrchestratorLogFormatter(logging.Formatter):
    """Plain formatter: ``HH:MM:SS LEVEL [component] [role] [task] message``."""

    def __init__(self, component: str, use_colors: bool = True):
        super().__init__()
        self.component = component
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:8s}"
        if self.use_colors and record.levelname in LEVEL_COLORS:
            level = f"{LEVEL_COLORS[record.levelname]}{level}{RESET}"

        tags = [f"[{self.component}]"]
        for attr in ("agent_role", "task_id"):
            value = getattr(record, attr, None)
            if value:
                tags.append(f"[{value}]")

        return f"{clock} {level} {' '.join(tags)} {record.getMessage()}"


class ContextLogger(logging.LoggerAdapter):
    """Adapter that stamps the current task id and agent role onto every record."""

    def __init__(self, logger: logging.Logger, component: str = "maestro"):
        super().__init__(logger, {})
        self.component = component
        self.current_task_id: Optional[str] = None
        self.current_agent_role: Optional[str] = None

    def set_task_context(self, task_id: Optional[str] = None, agent_role: Optional[str] = None):
        if task_id:
            self.current_task_id = task_id
        if agent_role is not None:
            self.current_agent_role = agent_role

    def clear_context(self):
        self.current_task_id = None
        self.current_agent_role = None

    def process(self, msg, kwargs):
        context = {"task_id": self.current_task_id, "agent_role": self.current_agent_role}
        kwargs["extra"] = {
            **(kwargs.get("extra") or {}),
            **{key: value for key, value in context.items() if value},
        }
        return msg, kwargs

    def task_started(self, task_id: str, goal: str, agent_role: Optional[str] = None):
        self.set_task_context(task_id=task_id, agent_role=agent_role)
        self.info(f"📋 Starting task: {goal}")

    def task_completed(self, duration_ms: float):
        self.info(f"✅ Task completed in {duration_ms / 1000:.1f}s")
        self.clear_context()

    def task_failed(self, error: str, attempt: int):
        self.error(f"❌ Task failed (attempt {attempt}): {error}")
        self.clear_context()

    def progress(self, message: str):
        self.info(f"⏳ {message}")


JSON_FORMAT = (
    '{"timestamp":"%(asctime)s","component":"%(component)s","level":"%(levelname)s",'
    '"logger":"%(name)s","message":"%(message)s"}'
)


def _console_handler(component: str, use_json: bool, use_rich: bool) -> logging.Handler:
    interactive = getattr(sys.stdout, "isatty", lambda: False)()
    if use_json:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(JSON_FORMAT, defaults={"component": component}))
    elif use_rich and interactive:
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(OrchestratorLogFormatter(component, use_colors=interactive))
    return handler


def setup_rich_logging(
    component: str = "maestro",
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    use_json: bool = False,
    use_rich: bool = True,
) -> ContextLogger:
    """
    Configure the ``component`` logger and return a ContextLogger over it.

    Args:
        component: Logger name, also shown in every plain-text record
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Also append plain records here (parent dirs are created)
        use_json: One JSON object per console line
        use_rich: RichHandler on interactive terminals
    """
    logger = logging.getLogger(component)
    logger.setLevel(log_level.upper())

    # Repeated setup must not leak file handles
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    logger.addHandler(_console_handler(component, use_json, use_rich))

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(OrchestratorLogFormatter(component, use_colors=False))
        logger.addHandler(file_handler)

    return ContextLogger(logger, component)
