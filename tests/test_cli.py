"""Tests for the cratepipe CLI (workflows mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from cratepipe.cli import main
from cratepipe.engines.publisher.selection import PublishSelection
from cratepipe.exceptions import CheckSkipped, CommandError, CrateMatchError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging():
    with patch("cratepipe.cli.setup_logging"):
        yield


class TestCheckDependent:
    ARGS = ["check-dependent", "paritytech", "substrate", "--substrate", "polkadot", "token"]

    def test_positional_diener_arg(self, runner, tmp_path):
        with patch("cratepipe.cli.DependentCheckRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock()
            result = runner.invoke(
                main,
                [*self.ARGS, "sp-io sp-core", "--repo-dir", str(tmp_path)],
                env={"CI_COMMIT_REF_NAME": "123", "CI_JOB_NAME": "check-dependent-polkadot"},
            )

        assert result.exit_code == 0, result.output
        config = runner_cls.call_args.args[0]
        assert config.this_repo_diener_arg == "--substrate"
        assert config.dependent_repo == "polkadot"
        assert config.update_crates == ["sp-io", "sp-core"]
        assert config.ref == "123"
        assert config.job_name == "check-dependent-polkadot"
        assert config.this_repo_dir == tmp_path.resolve()
        assert config.match_crates is True

    def test_check_command_from_env(self, runner):
        with patch("cratepipe.cli.DependentCheckRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock()
            result = runner.invoke(
                main,
                self.ARGS,
                env={"CI_COMMIT_REF_NAME": "master", "COMPANION_CHECK_COMMAND": "cargo test"},
            )
        assert result.exit_code == 0, result.output
        assert runner_cls.call_args.args[0].check_command == "cargo test"
        assert runner_cls.call_args.args[0].update_crates == []

    def test_skip_exits_zero(self, runner):
        with patch("cratepipe.cli.DependentCheckRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(side_effect=CheckSkipped("Skipping check-x"))
            result = runner.invoke(main, self.ARGS, env={"CI_COMMIT_REF_NAME": "1"})
        assert result.exit_code == 0
        assert "Skipping check-x" in result.output

    def test_match_error_exits_one(self, runner):
        with patch("cratepipe.cli.DependentCheckRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(side_effect=CrateMatchError("polkadot", ["gone"]))
            result = runner.invoke(main, self.ARGS, env={"CI_COMMIT_REF_NAME": "1"})
        assert result.exit_code == 1
        assert 'Failed to detect our crate "gone"' in result.output

    def test_check_failure_keeps_exit_code(self, runner):
        with patch("cratepipe.cli.DependentCheckRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(side_effect=CommandError("cargo check", 101))
            result = runner.invoke(main, self.ARGS, env={"CI_COMMIT_REF_NAME": "1"})
        assert result.exit_code == 101

    def test_ref_required(self, runner):
        result = runner.invoke(main, self.ARGS, env={"CI_COMMIT_REF_NAME": None})
        assert result.exit_code == 2


class TestPublish:
    ENV = {"CRATESIO_TARGET_INSTANCE": "default", "CI_COMMIT_REF_NAME": "master"}

    def test_env_driven_config(self, runner, tmp_path):
        env = {
            **self.ENV,
            "SPUB_PUBLISH": "extra-a extra-b\n",
            "SPUB_EXCLUDE": "skip-me",
            "SPUB_AFTER_PUBLISH_DELAY": "15",
            "REPO_OWNER": "paritytech",
            "REPO": "substrate",
        }
        with patch("cratepipe.cli.PublishRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(return_value=PublishSelection(crates=["a"]))
            result = runner.invoke(main, ["publish", "--root", str(tmp_path)], env=env)

        assert result.exit_code == 0, result.output
        config = runner_cls.call_args.args[0]
        assert config.include == ["extra-a", "extra-b"]
        assert config.exclude == ["skip-me"]
        assert config.after_publish_delay == 15
        assert config.repo_owner == "paritytech"
        assert config.check_ownership is False
        assert config.root == tmp_path.resolve()

    def test_malformed_crate_list(self, runner, tmp_path):
        env = {**self.ENV, "SPUB_PUBLISH": "a\n\nb"}
        with patch("cratepipe.cli.PublishRunner") as runner_cls:
            result = runner.invoke(main, ["publish", "--root", str(tmp_path)], env=env)
        assert result.exit_code == 1
        assert "SPUB_PUBLISH" in result.output
        runner_cls.assert_not_called()

    def test_short_circuit_message(self, runner, tmp_path):
        with patch("cratepipe.cli.PublishRunner") as runner_cls:
            runner_cls.return_value.run = AsyncMock(return_value=PublishSelection(short_circuit=True))
            result = runner.invoke(main, ["publish", "--root", str(tmp_path)], env=self.ENV)
        assert result.exit_code == 0
        assert "nothing to do" in result.output

    def test_target_required(self, runner, tmp_path):
        result = runner.invoke(
            main,
            ["publish", "--root", str(tmp_path)],
            env={"CI_COMMIT_REF_NAME": "master", "CRATESIO_TARGET_INSTANCE": None},
        )
        assert result.exit_code == 2
