"""Shared fixtures for unit tests."""

import pytest

from maestro.core.task import ProjectContext, TaskContext


@pytest.fixture
def project_context():
    return ProjectContext(name="demo", description="Demo project", constraints=["Use Python"])


@pytest.fixture
def task_context(project_context):
    return TaskContext(project_context=project_context)
