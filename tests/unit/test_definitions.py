import pytest
from pydantic import ValidationError

from relayflow.definitions import DefinitionStore, ai, build_steps, client_validate, human
from relayflow.errors import NotFound
from relayflow.models import AIStep, ClientValidateStep, HumanStep
from relayflow.persistence import InMemoryWorkflowRepository
from relayflow.predefined import PREDEFINED, service_catalog_workflow


def test_build_steps_numbers_in_list_order():
    steps = build_steps(
        [
            human("Collect brief", "Paste the brief"),
            ai("Draft", "You write copy.", "Write about {{topic}}"),
            client_validate("Client sign-off"),
        ]
    )
    assert [s.order_index for s in steps] == [0, 1, 2]
    assert isinstance(steps[0], HumanStep)
    assert isinstance(steps[1], AIStep)
    assert steps[1].user_prompt_template == "Write about {{topic}}"
    assert isinstance(steps[2], ClientValidateStep)


def test_build_steps_rejects_unknown_kind():
    with pytest.raises(ValueError):
        build_steps([{"kind": "robot", "label": "Beep"}])


@pytest.mark.asyncio
async def test_create_get_and_list():
    store = DefinitionStore(InMemoryWorkflowRepository())
    created = await store.create(
        "Blog post",
        [human("Outline"), ai("Write", "You write.", "Expand {{outline}}")],
        description="Two step draft",
        author_id="alice",
        category="Marketing",
    )

    loaded = await store.get(created.id)
    assert loaded.title == "Blog post"
    assert loaded.author_id == "alice"
    assert loaded.category == "Marketing"
    assert len(loaded.steps) == 2
    assert [d.id for d in await store.list_definitions()] == [created.id]

    with pytest.raises(NotFound):
        await store.get("missing")


@pytest.mark.asyncio
async def test_revise_replaces_steps_and_version():
    store = DefinitionStore(InMemoryWorkflowRepository())
    created = await store.create("Report", [human("Draft")])

    revised = await store.revise(
        created.id,
        [human("Draft"), human("Review")],
        version="1.1",
        version_notes="Added a review step",
    )
    assert revised.id == created.id
    assert revised.version == "1.1"
    assert revised.version_notes == "Added a review step"
    assert [s.label for s in (await store.get(created.id)).steps] == ["Draft", "Review"]


@pytest.mark.asyncio
async def test_revise_rejects_broken_ordering():
    store = DefinitionStore(InMemoryWorkflowRepository())
    created = await store.create("Report", [human("Draft")])

    with pytest.raises(ValidationError):
        await store.revise(
            created.id,
            [HumanStep(order_index=0, label="A"), HumanStep(order_index=3, label="B")],
            version="2.0",
        )
    assert (await store.get(created.id)).version == "1.0"


def test_predefined_workflows_are_valid():
    catalog = service_catalog_workflow(author_id="seed")
    assert len(catalog.steps) == 7
    assert catalog.category == "service_catalog"
    assert catalog.title == "Service Catalog - Banking"
    assert isinstance(catalog.steps[3], ClientValidateStep)
    assert catalog.author_id == "seed"

    for name, factory in PREDEFINED.items():
        definition = factory()
        assert definition.steps, name
        assert [s.order_index for s in definition.steps] == list(range(len(definition.steps)))
