"""Unit tests for the sitedeploy CLI commands."""

import json
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from sitedeploy.cli import main
from sitedeploy.deployer import DeployPlan, DeployResult
from sitedeploy.exceptions import DeployTransferError
from sitedeploy.profile import Strategy, TransferMode
from sitedeploy.retry import InteractiveFailurePolicy, RetryPolicy


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Project directory with a build output and a deploy.config.yaml."""
    (tmp_path / "dist").mkdir()
    (tmp_path / "dist" / "index.html").write_text("<h1>hi</h1>")
    (tmp_path / "deploy.config.yaml").write_text(
        "defaults:\n"
        "  username: deploy\n"
        "  privateKeyPath: ~/.ssh/id_ed25519\n"
        "deployments:\n"
        "  production:\n"
        "    host: example.com\n"
        "    localDir: dist\n"
        "    remoteDir: /var/www/site\n"
        "    strategy: symlink\n"
        "  staging:\n"
        "    host: staging.example.com\n"
        "    localDir: dist\n"
        "    remoteDir: /var/www/staging\n"
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DEPLOY_CONFIG", raising=False)
    monkeypatch.delenv("DEPLOY_STRATEGY", raising=False)
    monkeypatch.delenv("DEPLOY_TRANSFER", raising=False)
    return tmp_path


def successful_result(**kwargs):
    values = {
        "success": True,
        "strategy": Strategy.SYMLINK,
        "transfer": TransferMode.SFTP,
        "target_dir": "/var/www/releases/20240104000000",
        "release": "20240104000000",
        "uploaded_files": 1,
        "uploaded_bytes": 11,
    }
    values.update(kwargs)
    return DeployResult(**values)


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "deploy" in result.output
        assert "list" in result.output
        assert "--json" in result.output

    def test_deploy_help(self, runner):
        result = runner.invoke(main, ["deploy", "--help"])

        assert result.exit_code == 0
        assert "--strategy" in result.output
        assert "--dry-run" in result.output
        assert "--relay-host" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestListCommand:
    """Tests for the list command."""

    def test_lists_profiles(self, runner, project):
        result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "production" in result.output
        assert "staging" in result.output

    def test_json_output(self, runner, project):
        result = runner.invoke(main, ["--json", "list"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["profiles"] == ["production", "staging"]

    def test_no_config(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("DEPLOY_CONFIG", raising=False)

        result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "No config file found" in result.output

    def test_missing_explicit_config(self, runner, project):
        result = runner.invoke(main, ["list", "--config", "missing.yaml"])

        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestDeployCommand:
    """Tests for the deploy command."""

    @patch("sitedeploy.cli.Deployer")
    def test_successful_deploy(self, mock_deployer_class, runner, project):
        """Test a deploy resolves the profile and prints a summary."""
        mock_deployer = Mock()
        mock_deployer.run.return_value = successful_result()
        mock_deployer_class.return_value = mock_deployer

        result = runner.invoke(main, ["deploy", "production", "--no-progress"])

        assert result.exit_code == 0, result.output
        assert "Deployment Complete" in result.output
        assert "20240104000000" in result.output
        profile = mock_deployer.run.call_args.args[0]
        assert profile.host == "example.com"
        assert profile.strategy == Strategy.SYMLINK
        assert profile.local_dir == project / "dist"
        assert isinstance(mock_deployer_class.call_args.kwargs["policy"], RetryPolicy)

    @patch("sitedeploy.cli.Deployer")
    def test_overrides_and_extra_commands(self, mock_deployer_class, runner, project):
        mock_deployer_class.return_value.run.return_value = successful_result()

        result = runner.invoke(
            main,
            [
                "deploy",
                "--profile",
                "staging",
                "--transfer",
                "tar",
                "--batch-size",
                "2",
                "--concurrency",
                "3",
                "--pre",
                "make build",
                "--post",
                "echo done",
                "--no-progress",
            ],
        )

        assert result.exit_code == 0, result.output
        profile = mock_deployer_class.return_value.run.call_args.args[0]
        assert profile.host == "staging.example.com"
        assert profile.transfer == TransferMode.TAR
        assert profile.batch_size_bytes == 2 * 1024 * 1024
        assert profile.concurrency == 3
        assert profile.pre_commands == ("make build",)
        assert profile.post_commands == ("echo done",)

    @patch("sitedeploy.cli.Deployer")
    def test_interactive_policy(self, mock_deployer_class, runner, project):
        mock_deployer_class.return_value.run.return_value = successful_result()

        result = runner.invoke(main, ["deploy", "production", "--interactive"])

        assert result.exit_code == 0, result.output
        policy = mock_deployer_class.call_args.kwargs["policy"]
        assert isinstance(policy, InteractiveFailurePolicy)
        assert "progress" not in mock_deployer_class.call_args.kwargs

    @patch("sitedeploy.cli.Deployer")
    def test_failed_deploy_exits_1(self, mock_deployer_class, runner, project):
        mock_deployer_class.return_value.run.return_value = DeployResult(
            success=False, error=DeployTransferError("Permission denied")
        )

        result = runner.invoke(main, ["deploy", "production", "--no-progress"])

        assert result.exit_code == 1
        assert "Deployment failed: Permission denied" in result.output

    @patch("sitedeploy.cli.Deployer")
    def test_json_result(self, mock_deployer_class, runner, project):
        mock_deployer_class.return_value.run.return_value = successful_result()

        result = runner.invoke(main, ["--json", "deploy", "production"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["success"] is True
        assert data["release"] == "20240104000000"
        assert data["uploaded_files"] == 1

    @patch("sitedeploy.cli.Deployer")
    def test_keyboard_interrupt_exits_130(self, mock_deployer_class, runner, project):
        mock_deployer_class.return_value.run.side_effect = KeyboardInterrupt()

        result = runner.invoke(main, ["deploy", "production", "--no-progress"])

        assert result.exit_code == 130
        assert "cancelled" in result.output

    def test_unknown_profile_exits_1(self, runner, project):
        result = runner.invoke(main, ["deploy", "qa"])

        assert result.exit_code == 1
        assert "Unknown deployment profile 'qa'" in result.output

    def test_invalid_config_value_exits_1(self, runner, project):
        result = runner.invoke(
            main, ["deploy", "production", "--port", "0", "--no-progress"]
        )

        assert result.exit_code == 1
        assert "ports must be positive" in result.output

    @patch("sitedeploy.cli.Deployer")
    def test_dry_run_prints_plan(self, mock_deployer_class, runner, project):
        mock_deployer_class.return_value.plan.return_value = DeployPlan(
            host="deploy@example.com:22",
            local_dir=project / "dist",
            remote_dir="/var/www/site",
            target_dir="/var/www/releases/20240104000000",
            strategy=Strategy.SYMLINK,
            transfer=TransferMode.SFTP,
            local_files=1,
            local_bytes=11,
        )

        result = runner.invoke(main, ["deploy", "production", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Deployment Plan (dry run)" in result.output
        assert "deploy@example.com:22" in result.output
        mock_deployer_class.return_value.run.assert_not_called()

    def test_dry_run_json_without_mocks(self, runner, project):
        """A dry run never connects, so it works against an unreachable host."""
        result = runner.invoke(main, ["--json", "deploy", "staging", "--check"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["host"] == "deploy@staging.example.com:22"
        assert data["strategy"] == "inplace"
        assert data["local_files"] == 1
