import asyncio
import re

import pytest
from typer.testing import CliRunner

import relayflow.persistence as persistence
from relayflow.cli import app
from relayflow.definitions import DefinitionStore, ai, client_validate, human
from relayflow.persistence import InMemoryWorkflowRepository


@pytest.fixture
def repo(monkeypatch) -> InMemoryWorkflowRepository:
    monkeypatch.setenv("RELAYFLOW_AI_BACKEND", "static")
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return repo


def _create(repo, title, steps):
    return asyncio.run(DefinitionStore(repo).create(title, steps))


def test_workflow_seed_list_and_show(repo):
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "seed", "service-catalog", "--author", "alice"])
    assert result.exit_code == 0, result.stdout
    assert "Registered Service Catalog" in result.stdout

    [definition] = asyncio.run(repo.list_definitions())
    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.stdout
    assert definition.id in result.stdout
    assert "7 steps" in result.stdout

    result = runner.invoke(app, ["workflow", "show", definition.id])
    assert result.exit_code == 0, result.stdout
    assert "3. [client_validate]" in result.stdout


def test_workflow_seed_unknown_and_show_missing(repo):
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "seed", "nope"])
    assert result.exit_code == 1
    assert "Unknown workflow" in result.stdout

    result = runner.invoke(app, ["workflow", "show", "missing-id"])
    assert result.exit_code == 1
    assert "Workflow missing-id not found" in result.stdout


def test_instance_runs_to_completion(repo, tmp_path):
    definition = _create(
        repo,
        "Client report",
        [
            human("Draft"),
            ai("Polish", "You edit text.", "Polish this: {{draft}}"),
            client_validate("Client upload"),
        ],
    )
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["instance", "start", definition.id, "--by", "alice", "--client-email", "client@acme.test"],
    )
    assert result.exit_code == 0, result.stdout
    instance_id = re.search(r"Started instance (\S+)", result.stdout).group(1)

    result = runner.invoke(
        app, ["instance", "step", instance_id, "--output", "rough draft", "--time-ms", "1200"]
    )
    assert result.exit_code == 0, result.stdout
    assert "step 1/3" in result.stdout

    result = runner.invoke(
        app, ["instance", "step", instance_id, "--vars", '{"draft": "rough draft"}']
    )
    assert result.exit_code == 0, result.stdout
    assert "OK" in result.stdout
    assert "step 2/3" in result.stdout

    result = runner.invoke(app, ["instance", "step", instance_id])
    assert result.exit_code == 0, result.stdout
    assert "Client validation pending for client@acme.test" in result.stdout
    token = re.search(r"client-validation/(\S+)", result.stdout).group(1)

    result = runner.invoke(app, ["validation", "show", token])
    assert result.exit_code == 0, result.stdout
    assert "pending" in result.stdout

    upload = tmp_path / "statement.csv"
    upload.write_text("date,amount\n")
    result = runner.invoke(app, ["validation", "resolve", token, str(upload)])
    assert result.exit_code == 0, result.stdout
    assert "is completed" in result.stdout

    result = runner.invoke(app, ["instance", "show", instance_id])
    assert result.exit_code == 0, result.stdout
    assert "completed (step 3/3)" in result.stdout
    assert "Client upload [client_validate]: completed" in result.stdout

    result = runner.invoke(app, ["instance", "rate", instance_id, "4"])
    assert result.exit_code == 0, result.stdout

    result = runner.invoke(
        app, ["instance", "metrics", instance_id, "--avg-time-ms", "1000000", "--avg-cost", "1"]
    )
    assert result.exit_code == 0, result.stdout
    assert "Quality: 4.0/5" in result.stdout
    assert "Cost savings:" in result.stdout

    result = runner.invoke(app, ["instance", "list"])
    assert instance_id in result.stdout


def test_instance_errors_exit_with_code_one(repo):
    definition = _create(repo, "Single", [human("Only")])
    runner = CliRunner()

    result = runner.invoke(app, ["instance", "start", definition.id, "--by", "alice"])
    instance_id = re.search(r"Started instance (\S+)", result.stdout).group(1)

    result = runner.invoke(app, ["instance", "step", instance_id])
    assert result.exit_code == 1
    assert "MissingOutput" in result.stdout

    result = runner.invoke(app, ["instance", "step", instance_id, "--vars", "{not json"])
    assert result.exit_code == 1
    assert "Invalid --vars JSON" in result.stdout

    for value in ("[1, 2]", '"text"', "3"):
        result = runner.invoke(app, ["instance", "step", instance_id, "--vars", value])
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "--vars must be a JSON object" in result.stdout

    result = runner.invoke(app, ["instance", "fail", instance_id, "cancelled"])
    assert result.exit_code == 0, result.stdout
    assert "failed" in result.stdout

    result = runner.invoke(app, ["instance", "fail", instance_id, "again"])
    assert result.exit_code == 1
    assert "InvalidState" in result.stdout

    result = runner.invoke(app, ["instance", "show", "missing-id"])
    assert result.exit_code == 1
    assert "not found" in result.stdout
