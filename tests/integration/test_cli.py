"""Integration tests for the command-line interface."""

import json
from unittest.mock import Mock

import pytest
import yaml
from click.testing import CliRunner

from intake_gateway.cli.main import cli


@pytest.fixture(autouse=True)
def no_global_logging(monkeypatch):
    monkeypatch.setattr("intake_gateway.cli.main.setup_logging", Mock())
    for name in ("INTAKE_INFERENCE_ENDPOINT", "INTAKE_CONFIG_PATH", "INTAKE_NODE_ID"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "logging": {"directory": str(tmp_path / "logs")},
        "storage": {"backend": "memory"},
        "session": {"node_id": "cli-node"}
    }))
    return str(path)


@pytest.fixture
def message_file(tmp_path):
    path = tmp_path / "message.json"
    path.write_text(json.dumps({
        "sender": "client@acme.com",
        "recipient": "billing@firm.com",
        "subject": "Invoice question",
        "body": "I have a question about my invoice and payment."
    }))
    return str(path)


def invoke(*args):
    return CliRunner().invoke(cli, list(args), obj={})


class TestCommands:
    """Each command against a throwaway configuration."""

    def test_templates(self):
        result = invoke("templates")

        assert result.exit_code == 0
        assert "case_analysis" in result.stdout.split()

    def test_validate(self, config_file):
        result = invoke("--config", config_file, "validate")

        assert result.exit_code == 0
        assert "Configuration validation completed successfully!" in result.stdout
        assert "Node: cli-node" in result.stdout
        assert "No inference endpoint configured" in result.stdout

    def test_init_config(self, tmp_path):
        path = tmp_path / "fresh" / "config.yaml"

        first = invoke("--config", str(path), "init-config")
        second = invoke("--config", str(path), "init-config")
        forced = invoke("--config", str(path), "init-config", "--force")

        assert first.exit_code == 0
        assert yaml.safe_load(path.read_text())["routing"]["confidence_threshold"] == 0.7
        assert second.exit_code == 1
        assert "already exists" in second.output
        assert forced.exit_code == 0

    def test_export_config(self, config_file, tmp_path):
        output = tmp_path / "exported.yaml"
        result = invoke("--config", config_file, "export-config", "--output", str(output))

        assert result.exit_code == 0
        assert yaml.safe_load(output.read_text())["session"]["node_id"] == "cli-node"

    def test_route(self, config_file, message_file):
        result = invoke("--config", config_file, "route", message_file)
        decision = json.loads(result.stdout)

        assert result.exit_code == 0
        assert decision["source"] == "rule"
        assert decision["category"] == "billing"
        assert decision["is_fallback"] is True

    def test_process_yaml_output(self, config_file, message_file):
        result = invoke("--config", config_file, "process", message_file, "--output-format", "yaml")
        body = yaml.safe_load(result.stdout)

        assert result.exit_code == 0
        assert body["session_id"] == "sender:client@acme.com"
        assert body["delivery"]["delivered_to"] == "intake@example.com"

    def test_workflow_without_inference(self, config_file, tmp_path):
        context = tmp_path / "context.yaml"
        context.write_text(yaml.dump({"sender": "client@acme.com", "recipient": "intake@firm.com"}))

        result = invoke("--config", config_file, "workflow", "intake_processing", "--context", str(context))
        body = json.loads(result.stdout)

        assert result.exit_code == 0
        assert body["state"] == "failed"
        assert body["step_outcomes"]["triage_request"]["status"] == "unavailable"

    def test_batch(self, config_file, tmp_path):
        items = tmp_path / "items.json"
        items.write_text(json.dumps([
            {"entity_id": "m-1", "metadata": {"message": {"subject": "invoice"}, "cost": 1.5}},
            {"entity_id": "m-2", "metadata": {}},
        ]))

        result = invoke("--config", config_file, "batch", str(items), "--batch-size", "1")
        body = json.loads(result.stdout)

        assert result.exit_code == 0
        assert len(body["batches"]) == 2
        assert body["aggregate"]["processed"] == 1
        assert body["aggregate"]["dead_lettered"] == 1
        assert body["aggregate"]["total_cost"] == 1.5

    def test_route_missing_file(self, config_file, tmp_path):
        result = invoke("--config", config_file, "route", str(tmp_path / "absent.json"))

        assert result.exit_code == 1
        assert "Error routing message" in result.output
