"""Shared fixtures for relayflow tests."""

import asyncio

import pytest

import relayflow.persistence as persistence
from relayflow.clock import ManualClock
from relayflow.definitions import DefinitionStore
from relayflow.engine import WorkflowEngine
from relayflow.executors import AIExecutor, AIResult
from relayflow.files import InMemoryFileIntake
from relayflow.persistence import InMemoryWorkflowRepository
from relayflow.validations import ClientValidationBroker


class ScriptedExecutor(AIExecutor):
    """Replays queued results or errors, moving the clock by ``elapsed_ms`` per call."""

    def __init__(self, clock: ManualClock, elapsed_ms: int = 0, yield_first: bool = False):
        self.clock = clock
        self.elapsed_ms = elapsed_ms
        self.yield_first = yield_first
        self.queue: list = []
        self.prompts: list[tuple[str, str]] = []

    def push(self, *items) -> None:
        self.queue.extend(items)

    async def execute(self, system_prompt: str, user_prompt: str) -> AIResult:
        self.prompts.append((system_prompt, user_prompt))
        if self.yield_first:
            # let a racing caller read the same instance version
            await asyncio.sleep(0)
        self.clock.advance(ms=self.elapsed_ms)
        item = self.queue.pop(0) if self.queue else AIResult(content="ok")
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for var in (
        "RELAYFLOW_CONFIG",
        "RELAYFLOW_DATABASE_URL",
        "DATABASE_URL",
        "RELAYFLOW_AI_MODEL",
        "RELAYFLOW_AI_BACKEND",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(persistence, "_repository_instance", None)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def executor(clock):
    return ScriptedExecutor(clock, elapsed_ms=250)


@pytest.fixture
def file_intake():
    return InMemoryFileIntake()


@pytest.fixture
def broker():
    return ClientValidationBroker(public_base_url="https://app.example.com")


@pytest.fixture
def engine(repo, executor, broker, clock, file_intake):
    return WorkflowEngine(
        repo, executor, broker=broker, clock=clock, file_intake=file_intake
    )


@pytest.fixture
def store(repo):
    return DefinitionStore(repo)
