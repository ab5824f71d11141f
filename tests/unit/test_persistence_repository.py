from datetime import timedelta

import pytest

from relayflow.clock import ManualClock
from relayflow.errors import ConcurrentModification, InvalidState, NotFound
from relayflow.models import (
    ClientValidation,
    HumanStep,
    StepExecution,
    StepKind,
    StepStatus,
    ValidationStatus,
    WorkflowDefinition,
    WorkflowInstance,
)
from relayflow.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository


@pytest.fixture(params=["memory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryWorkflowRepository()
    return SQLiteWorkflowRepository(tmp_path / "wf.db")


def _definition() -> WorkflowDefinition:
    return WorkflowDefinition(
        title="Onboarding",
        steps=[
            HumanStep(order_index=0, label="Collect"),
            HumanStep(order_index=1, label="Approve"),
        ],
    )


def _instance(definition: WorkflowDefinition, clock: ManualClock) -> WorkflowInstance:
    return WorkflowInstance(
        workflow_id=definition.id,
        title=definition.title,
        steps=list(definition.steps),
        started_by="alice",
        started_at=clock.now(),
    )


def _execution(instance: WorkflowInstance, clock: ManualClock) -> StepExecution:
    return StepExecution(
        instance_id=instance.id,
        step_id=instance.steps[0].id,
        step_index=0,
        kind=StepKind.HUMAN,
        started_at=clock.now(),
    )


def _validation(instance: WorkflowInstance, execution: StepExecution, clock: ManualClock):
    return ClientValidation(
        instance_id=instance.id,
        step_id=execution.step_id,
        execution_id=execution.id,
        client_email="client@example.com",
        created_at=clock.now(),
        expires_at=clock.now() + timedelta(days=7),
        secure_token=f"token-{execution.id}",
    )


@pytest.mark.asyncio
async def test_definitions_round_trip(repository):
    definition = _definition()
    await repository.save_definition(definition)

    loaded = await repository.get_definition(definition.id)
    assert loaded.model_dump() == definition.model_dump()
    assert await repository.get_definition("missing") is None
    assert [d.id for d in await repository.list_definitions()] == [definition.id]


@pytest.mark.asyncio
async def test_instance_compare_and_swap(repository):
    clock = ManualClock()
    instance = _instance(_definition(), clock)
    await repository.create_instance(instance)

    stored = await repository.get_instance(instance.id)
    assert stored.version == 0

    moved = stored.model_copy(update={"current_step_index": 1})
    saved = await repository.update_instance(moved, expected_version=0)
    assert saved.version == 1
    assert (await repository.get_instance(instance.id)).current_step_index == 1

    with pytest.raises(ConcurrentModification):
        await repository.update_instance(moved, expected_version=0)

    ghost = _instance(_definition(), clock)
    with pytest.raises(NotFound):
        await repository.update_instance(ghost, expected_version=0)


@pytest.mark.asyncio
async def test_list_instances_newest_first_and_filtered(repository):
    clock = ManualClock()
    first_def, second_def = _definition(), _definition()
    older = _instance(first_def, clock)
    clock.advance(seconds=10)
    newer = _instance(first_def, clock)
    other = _instance(second_def, clock)
    for instance in (older, newer, other):
        await repository.create_instance(instance)

    listed = await repository.list_instances(first_def.id)
    assert [i.id for i in listed] == [newer.id, older.id]
    assert len(await repository.list_instances()) == 3


@pytest.mark.asyncio
async def test_step_executions_are_sealed_once(repository):
    clock = ManualClock()
    instance = _instance(_definition(), clock)
    await repository.create_instance(instance)

    first = _execution(instance, clock)
    second = _execution(instance, clock)
    await repository.add_step_execution(first)
    await repository.add_step_execution(second)

    sealed = first.model_copy(
        update={"status": StepStatus.COMPLETED, "completed_at": clock.now(), "output": {"ok": True}}
    )
    await repository.seal_step_execution(sealed)

    with pytest.raises(InvalidState):
        await repository.seal_step_execution(
            sealed.model_copy(update={"status": StepStatus.FAILED})
        )
    with pytest.raises(NotFound):
        await repository.seal_step_execution(_execution(instance, clock))

    loaded = await repository.get_step_execution(first.id)
    assert loaded.status == StepStatus.COMPLETED
    assert loaded.output == {"ok": True}
    assert [e.id for e in await repository.list_step_executions(instance.id)] == [
        first.id,
        second.id,
    ]


@pytest.mark.asyncio
async def test_validation_lookup_and_compare_and_swap(repository):
    clock = ManualClock()
    instance = _instance(_definition(), clock)
    await repository.create_instance(instance)
    execution = _execution(instance, clock)
    await repository.add_step_execution(execution)
    validation = _validation(instance, execution, clock)
    await repository.create_validation(validation)

    by_token = await repository.get_validation_by_token(validation.secure_token)
    assert by_token.id == validation.id
    assert await repository.get_validation_by_token("nope") is None

    open_one = await repository.find_open_validation(instance.id, execution.step_id)
    assert open_one.id == validation.id

    expired = validation.model_copy(update={"status": ValidationStatus.EXPIRED})
    saved = await repository.update_validation(expired, expected_version=0)
    assert saved.version == 1
    assert await repository.find_open_validation(instance.id, execution.step_id) is None

    with pytest.raises(ConcurrentModification):
        await repository.update_validation(expired, expected_version=0)


@pytest.mark.asyncio
async def test_delete_instance_cascades(repository):
    clock = ManualClock()
    instance = _instance(_definition(), clock)
    await repository.create_instance(instance)
    execution = _execution(instance, clock)
    await repository.add_step_execution(execution)
    validation = _validation(instance, execution, clock)
    await repository.create_validation(validation)

    await repository.delete_instance(instance.id)

    assert await repository.get_instance(instance.id) is None
    assert await repository.list_step_executions(instance.id) == []
    assert await repository.get_step_execution(execution.id) is None
    assert await repository.get_validation(validation.id) is None


@pytest.mark.asyncio
async def test_sqlite_repository_survives_reopen(tmp_path):
    clock = ManualClock()
    db_path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(db_path)
    definition = _definition()
    instance = _instance(definition, clock)
    await repo.save_definition(definition)
    await repo.create_instance(instance)

    reopened = SQLiteWorkflowRepository(db_path)
    loaded = await reopened.get_instance(instance.id)
    assert loaded is not None
    assert loaded.model_dump()["steps"] == instance.model_dump()["steps"]
    assert loaded.started_at == instance.started_at
