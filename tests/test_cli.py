"""`mgm` CLI via click's CliRunner, with storage redirected to tmp_path."""

import json

import pytest
from click.testing import CliRunner

from mostly_good_metrics import ExperimentsResult
from mostly_good_metrics.cli import main as cli_main


@pytest.fixture
def runner(tmp_path, monkeypatch, network):
    monkeypatch.setattr(cli_main, "CONFIG_FILE", tmp_path / "config.json")
    monkeypatch.setattr(cli_main, "EVENTS_FILE", tmp_path / "events.json")
    monkeypatch.setattr(cli_main, "STATE_FILE", tmp_path / "state.json")
    monkeypatch.setattr("mostly_good_metrics.client.HttpNetworkClient", lambda device=None: network)
    monkeypatch.delenv("MGM_API_KEY", raising=False)
    monkeypatch.delenv("MGM_BASE_URL", raising=False)
    return CliRunner()


@pytest.fixture
def configured(runner):
    result = runner.invoke(cli_main.main, ["config", "set", "--api-key", "secret-key", "--environment", "dev"])
    assert result.exit_code == 0, result.output
    return runner


def invoke(runner, *args):
    return runner.invoke(cli_main.main, list(args))


def test_config_set_and_show(configured, tmp_path):
    stored = json.loads((tmp_path / "config.json").read_text())
    assert stored == {"api_key": "secret-key", "environment": "dev"}

    result = invoke(configured, "config", "show")
    shown = json.loads(result.output)
    assert shown["api_key"] == "secr..."
    assert shown["environment"] == "dev"


def test_commands_need_an_api_key(runner):
    result = invoke(runner, "track", "button_clicked")
    assert result.exit_code == 1
    assert "No API key" in result.output


def test_api_key_from_environment(runner, monkeypatch):
    monkeypatch.setenv("MGM_API_KEY", "env-key")
    result = invoke(runner, "track", "button_clicked")
    assert result.exit_code == 0, result.output


def test_track_queues_event(configured, tmp_path):
    result = invoke(configured, "track", "button_clicked", "-p", "count=3", "-p", "label=signup")
    assert result.exit_code == 0, result.output
    assert "Queued button_clicked" in result.output

    [event] = json.loads((tmp_path / "events.json").read_text())
    assert event["name"] == "button_clicked"
    assert event["environment"] == "dev"
    assert event["properties"] == {"count": 3, "label": "signup"}


def test_track_with_json_properties(configured, tmp_path):
    result = invoke(configured, "track", "purchase", "--json", '{"items": [{"sku": "a1"}]}')
    assert result.exit_code == 0, result.output
    [event] = json.loads((tmp_path / "events.json").read_text())
    assert event["properties"] == {"items": [{"sku": "a1"}]}


def test_track_rejects_invalid_name(configured):
    result = invoke(configured, "track", "1bad")
    assert result.exit_code == 1
    assert "Event name" in result.output


def test_track_rejects_malformed_property(configured):
    result = invoke(configured, "track", "button_clicked", "-p", "novalue")
    assert result.exit_code == 2


def test_track_and_flush(configured, network):
    result = invoke(configured, "track", "button_clicked", "--flush")
    assert result.exit_code == 0, result.output
    assert "sent" in result.output
    assert [e.name for e in network.sent_events] == ["button_clicked"]


def test_flush_reports_remaining(configured, network):
    invoke(configured, "track", "first")
    invoke(configured, "track", "second")
    result = invoke(configured, "flush")
    assert result.exit_code == 0, result.output
    assert "0 events pending" in result.output
    assert [e.name for e in network.sent_events] == ["first", "second"]


def test_queue_count_list_clear(configured):
    invoke(configured, "track", "first")
    invoke(configured, "track", "second")

    assert invoke(configured, "queue", "count").output.strip() == "2"

    listed = json.loads(invoke(configured, "queue", "list", "--json").output)
    assert [e["name"] for e in listed] == ["first", "second"]

    result = invoke(configured, "queue", "clear", "--yes")
    assert result.exit_code == 0, result.output
    assert invoke(configured, "queue", "count").output.strip() == "0"


def test_identify_and_reset(configured, tmp_path):
    result = invoke(configured, "identify", "user-1", "--email", "a@example.com")
    assert result.exit_code == 0, result.output
    state = json.loads((tmp_path / "state.json").read_text())
    assert state["user_id"] == "user-1"

    events = json.loads((tmp_path / "events.json").read_text())
    assert events[-1]["name"] == "$identify"
    assert events[-1]["properties"] == {"email": "a@example.com"}

    result = invoke(configured, "reset")
    assert result.exit_code == 0, result.output
    state = json.loads((tmp_path / "state.json").read_text())
    assert "user_id" not in state
    assert state["anonymous_id"] in result.output


def test_variant(configured, network):
    network.experiments_result = ExperimentsResult(success=True, assigned_variants={"checkout": "b"})
    result = invoke(configured, "variant", "checkout")
    assert result.exit_code == 0, result.output
    assert "checkout: b" in result.output

    result = invoke(configured, "variant", "unknown_experiment")
    assert "Unknown experiment" in result.output
