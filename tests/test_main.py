"""Tests for the click entry point."""

import json

from click.testing import CliRunner

from edgebeat.main import cli


def test_once_json_prints_a_payload():
    result = CliRunner().invoke(cli, ["once", "--json"])

    assert result.exit_code == 0, result.output
    # log lines may share the captured output; the payload is the JSON line
    line = next(ln for ln in result.output.splitlines() if ln.startswith("{"))
    data = json.loads(line)
    assert data["timestamp"].endswith("Z")
    assert "errors" in data
    for name in ("cpu", "load", "memory", "disk", "network", "host", "sensors"):
        assert name in data


def test_once_renders_table():
    result = CliRunner().invoke(cli, ["once"])
    assert result.exit_code == 0, result.output
    assert "edgebeat v" in result.output


def test_frequency_out_of_range_is_rejected():
    result = CliRunner().invoke(cli, ["--frequency", "0", "once", "--json"])
    assert result.exit_code != 0
    assert "frequency_seconds out of range" in result.output


def test_missing_config_file_is_rejected():
    result = CliRunner().invoke(cli, ["--config", "/nonexistent/edgebeat.yaml", "once"])
    assert result.exit_code != 0
    assert "read config" in result.output


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "edgebeat" in result.output
