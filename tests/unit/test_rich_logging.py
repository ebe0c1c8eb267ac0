"""Tests for the orchestrator log formatter and ContextLogger."""

import logging

from maestro.utils.rich_logging import ContextLogger, OrchestratorLogFormatter, setup_rich_logging


def _record(message="hello", **extra):
    record = logging.LogRecord("maestro", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_includes_component_and_context():
    formatter = OrchestratorLogFormatter("execution-loop", use_colors=False)

    line = formatter.format(_record(task_id="task-1", agent_role="implementer"))

    assert "INFO" in line
    assert "[execution-loop] [implementer] [task-1] hello" in line
    assert "\033[" not in line


def test_context_logger_attaches_task_context():
    adapter = ContextLogger(logging.getLogger("maestro.test"), "test")
    adapter.set_task_context(task_id="task-1", agent_role="reviewer")

    _, kwargs = adapter.process("msg", {})

    assert kwargs["extra"] == {"task_id": "task-1", "agent_role": "reviewer"}

    adapter.clear_context()
    _, kwargs = adapter.process("msg", {})
    assert kwargs["extra"] == {}


def test_task_completed_clears_context(caplog):
    adapter = ContextLogger(logging.getLogger("maestro.test"), "test")

    with caplog.at_level(logging.INFO, logger="maestro.test"):
        adapter.task_started("task-1", "Build API", "implementer")
        adapter.task_completed(1500)

    assert "Starting task: Build API" in caplog.text
    assert "Task completed in 1.5s" in caplog.text
    assert adapter.current_task_id is None
    assert caplog.records[0].task_id == "task-1"


def test_setup_writes_log_file(tmp_path):
    log_file = tmp_path / "logs" / "maestro.log"

    context_logger = setup_rich_logging("maestro-test", "DEBUG", log_file=log_file, use_rich=False)
    context_logger.info("written")
    for handler in context_logger.logger.handlers:
        handler.flush()

    assert "[maestro-test] written" in log_file.read_text()
    assert context_logger.logger.level == logging.DEBUG

    for handler in context_logger.logger.handlers[:]:
        handler.close()
        context_logger.logger.removeHandler(handler)
