"""CLI tests with the provisioning operation replaced by a scripted fake."""

import json

import pytest
from typer.testing import CliRunner

from nodepool_failover import cli
from nodepool_failover.core.config import Settings
from nodepool_failover.core.provisioning import RecordingAttemptSink
from nodepool_failover.tools.azure import MissingBinaryError

runner = CliRunner()

BASE = [
    "--resource-group", "rg-aks",
    "--cluster-name", "aks-prod",
    "--sku-primary", "Standard_E8s_v5",
]


class ScriptedOperation:
    def __init__(self, script: dict[str, object]) -> None:
        self.script = script
        self.requests = []
        self.timeouts = []

    async def __call__(self, request, *, timeout=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        result = self.script[request.sku]
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def wire(monkeypatch):
    sink = RecordingAttemptSink()

    def _wire(script: dict[str, object]) -> ScriptedOperation:
        op = ScriptedOperation(script)
        monkeypatch.setattr(cli, "build_operation", lambda settings, backend=None: op)
        return op

    monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))
    monkeypatch.setattr(cli, "_setup_logging", lambda settings: None)
    monkeypatch.setattr(cli, "_sink", lambda settings: sink)
    return _wire


def test_provision_primary_success(wire) -> None:
    op = wire({"Standard_E8s_v5": '{"name": "memnp"}'})

    result = runner.invoke(cli.app, ["provision", *BASE])

    assert result.exit_code == 0
    assert '{"name": "memnp"}' in result.stdout
    assert [r.sku for r in op.requests] == ["Standard_E8s_v5"]


def test_provision_falls_back_to_secondary_json(wire) -> None:
    wire({"Standard_E8s_v5": RuntimeError("(SkuNotAvailable) capacity"), "Standard_E8as_v5": "ok"})

    result = runner.invoke(
        cli.app, ["provision", *BASE, "--sku-secondary", "Standard_E8as_v5", "--json"]
    )

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["ok"] is True
    assert data["sku"] == "Standard_E8as_v5"
    assert data["rank"] == 2
    assert [a["status"] for a in data["attempts"]] == ["failed", "success"]
    assert data["attempts"][0]["output"] == "(SkuNotAvailable) capacity"


def test_provision_exhausted_exits_one(wire) -> None:
    wire({"Standard_E8s_v5": RuntimeError("capacity"), "Standard_D8s_v5": RuntimeError("quota")})

    result = runner.invoke(
        cli.app, ["provision", *BASE, "--sku-tertiary", "Standard_D8s_v5", "--json"]
    )

    assert result.exit_code == 1
    data = json.loads(result.stdout)
    assert data["ok"] is False
    assert [(a["sku"], a["rank"], a["output"]) for a in data["attempts"]] == [
        ("Standard_E8s_v5", 1, "capacity"),
        ("Standard_D8s_v5", 3, "quota"),
    ]


def test_provision_exhausted_prints_report(wire) -> None:
    wire({"Standard_E8s_v5": RuntimeError("capacity")})

    result = runner.invoke(cli.app, ["provision", *BASE])

    assert result.exit_code == 1
    assert "All SKU attempts failed: Standard_E8s_v5" in result.output


def test_provision_passes_options_through(wire) -> None:
    op = wire({"Standard_E8s_v5": "ok"})

    result = runner.invoke(
        cli.app,
        [
            "provision", *BASE,
            "--pool-name", "mempool",
            "--node-count", "3",
            "--max-count", "6",
            "--zones", "1 2",
            "--zones", "3",
            "--node-labels", "workload=memory",
            "--spot",
            "--os-sku", "AzureLinux",
        ],
    )

    assert result.exit_code == 0
    params = op.requests[0].parameters
    assert params.pool_name == "mempool"
    assert (params.node_count, params.min_count, params.max_count) == (3, 1, 6)
    assert params.zones == ("1", "2", "3")
    assert params.spot is True
    assert params.os_sku == "AzureLinux"


def test_invalid_parameters_exit_64_without_attempts(wire) -> None:
    op = wire({"Standard_E8s_v5": "ok"})

    result = runner.invoke(cli.app, ["provision", *BASE, "--min-count", "7"])

    assert result.exit_code == 64
    assert op.requests == []


def test_blank_primary_exit_64(wire) -> None:
    op = wire({})
    result = runner.invoke(
        cli.app,
        ["provision", "--resource-group", "rg", "--cluster-name", "aks", "--sku-primary", " "],
    )
    assert result.exit_code == 64
    assert op.requests == []


def test_unknown_backend_exit_64(wire) -> None:
    wire({"Standard_E8s_v5": "ok"})
    result = runner.invoke(cli.app, ["provision", *BASE, "--backend", "terraform"])
    assert result.exit_code == 64


def test_missing_az_exits_127(monkeypatch) -> None:
    def _raise(settings, backend=None):
        raise MissingBinaryError("az_binary", "Required command 'az' not found in PATH")

    monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))
    monkeypatch.setattr(cli, "_setup_logging", lambda settings: None)
    monkeypatch.setattr(cli, "build_operation", _raise)

    result = runner.invoke(cli.app, ["provision", *BASE])

    assert result.exit_code == 127


def test_plan_lists_commands_in_order(monkeypatch) -> None:
    monkeypatch.setattr(cli, "get_settings", lambda: Settings(_env_file=None))

    result = runner.invoke(
        cli.app,
        ["plan", *BASE, "--sku-secondary", "Standard_E8as_v5", "--sku-tertiary", "Standard_D8s_v5"],
    )

    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert lines[0] == "# 1. Standard_E8s_v5 (primary)"
    assert lines[2] == "# 2. Standard_E8as_v5 (secondary)"
    assert lines[4] == "# 3. Standard_D8s_v5 (tertiary)"
    assert lines[1].startswith("az aks nodepool add --resource-group rg-aks --cluster-name aks-prod")
    assert "--node-vm-size Standard_D8s_v5" in lines[5]


def test_missing_required_option_exits_64(wire) -> None:
    op = wire({"A": "ok"})

    result = runner.invoke(cli.app, ["provision", "--resource-group", "rg", "--sku-primary", "A"])

    assert result.exit_code == 64
    assert op.requests == []


def test_unknown_flag_exits_64(wire) -> None:
    op = wire({"Standard_E8s_v5": "ok"})

    result = runner.invoke(cli.app, ["provision", *BASE, "--bogus"])

    assert result.exit_code == 64
    assert op.requests == []


def test_unknown_command_exits_64() -> None:
    result = runner.invoke(cli.app, ["destroy"])
    assert result.exit_code == 64


@pytest.mark.parametrize("value", ["0", "-5"])
def test_non_positive_timeout_exits_64(wire, value) -> None:
    op = wire({"Standard_E8s_v5": "ok"})

    result = runner.invoke(cli.app, ["provision", *BASE, "--timeout", value])

    assert result.exit_code == 64
    assert op.requests == []


def test_timeout_option_overrides_settings(wire, monkeypatch) -> None:
    op = wire({"Standard_E8s_v5": "ok"})
    monkeypatch.setattr(
        cli,
        "get_settings",
        lambda: Settings(_env_file=None, provisioning={"attempt_timeout_seconds": 600}),
    )

    assert runner.invoke(cli.app, ["provision", *BASE, "--timeout", "30"]).exit_code == 0
    assert runner.invoke(cli.app, ["provision", *BASE]).exit_code == 0

    assert op.timeouts == [30.0, 600]
