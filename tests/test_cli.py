"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from triage_trainer.cli import build_agent, cli
from triage_trainer.models import EpisodeResult
from triage_trainer.simulation import LinearAgent, RuleBasedAgent


def summary_from(output):
    """Parse the JSON summary printed at the end of ``train``."""
    return json.loads(output[output.index("{\n"):])


@pytest.fixture
def runner():
    return CliRunner()


class TestTrain:
    """Tests for the train command."""

    def test_rule_agent_session(self, runner):
        result = runner.invoke(cli, ["train", "-n", "2", "--agent", "rule", "--seed", "1"])

        assert result.exit_code == 0, result.output
        summary = summary_from(result.output)
        assert summary["episodes"] == 2
        assert summary["status"]["episode"] == 2
        assert summary["analytics"]["global"]["episodes"] == 2

    def test_writes_json_lines(self, runner, tmp_path):
        output = tmp_path / "out" / "results.jsonl"
        result = runner.invoke(cli, ["train", "-n", "2", "--seed", "3", "-o", str(output)])

        assert result.exit_code == 0, result.output
        lines = output.read_text().splitlines()
        assert [EpisodeResult.from_json(line).episode_number for line in lines] == [1, 2]

    def test_strategy_option(self, runner):
        result = runner.invoke(
            cli, ["train", "-n", "1", "--seed", "2", "-s", "diversity_maximizing"]
        )
        assert result.exit_code == 0, result.output
        assert summary_from(result.output)["status"]["selection_strategy"] == "diversity_maximizing"

    def test_rejects_zero_episodes(self, runner):
        result = runner.invoke(cli, ["train", "-n", "0"])
        assert result.exit_code == 2
        assert "episodes must be >= 1" in result.output

    def test_config_file(self, runner, tmp_path):
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"orchestrator": {"cases_per_episode": 2}}))
        result = runner.invoke(cli, ["train", "-n", "1", "--seed", "4", "-c", str(path)])
        assert result.exit_code == 0, result.output

    def test_invalid_config_file(self, runner, tmp_path):
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"consultation": {"threshold": 0.5}}))
        result = runner.invoke(cli, ["train", "-n", "1", "-c", str(path)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestProfile:
    """Tests for the profile command."""

    def test_prints_cases_and_histogram(self, runner):
        result = runner.invoke(cli, ["profile", "-n", "3", "--seed", "42"])

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0].startswith("case-42-00001")
        histogram = json.loads(result.output[result.output.index("{\n"):])
        assert histogram["simple"] + histogram["moderate"] + histogram["complex"] + histogram["expert"] == 3


class TestBuildAgent:
    def test_agent_kinds(self):
        assert isinstance(build_agent("rule", 1), RuleBasedAgent)
        assert isinstance(build_agent("linear", 1), LinearAgent)
