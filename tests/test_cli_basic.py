"""
Basic tests for the solarops command line.
"""

import json

from click.testing import CliRunner
from unittest.mock import patch

from solarops.cli.main import main
from solarops.events import emit_event, EventTypes
from solarops.state import create_run_dir, write_run_json

RUN_ID = "r-20260101-120000-abcd"


def _record_run(workflow="deploy", final=EventTypes.DONE):
    create_run_dir(RUN_ID)
    write_run_json(RUN_ID, workflow, {})
    emit_event(RUN_ID, EventTypes.RUN_START, {"workflow": workflow})
    emit_event(RUN_ID, final, {"url": "http://example"})


class TestRunCommands:
    """Test runs, status and logs."""

    def test_runs_empty(self):
        result = CliRunner().invoke(main, ["runs"])
        assert result.exit_code == 0
        assert "No runs recorded" in result.output

    def test_runs_json(self):
        _record_run("cleanup")

        result = CliRunner().invoke(main, ["--json", "runs"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["runs"] == [{"run_id": RUN_ID, "workflow": "cleanup", "status": "succeeded"}]

    def test_status_unknown_run(self):
        result = CliRunner().invoke(main, ["status", "r-20260101-120000-zzzz"])
        assert result.exit_code == 2

    def test_status_invalid_id(self):
        result = CliRunner().invoke(main, ["status", "../etc"])
        assert result.exit_code == 2

    def test_status_human(self):
        _record_run()

        result = CliRunner().invoke(main, ["status", RUN_ID])

        assert result.exit_code == 0
        assert "Workflow: deploy" in result.output
        assert "succeeded" in result.output

    def test_logs(self):
        _record_run()

        result = CliRunner().invoke(main, ["logs", RUN_ID])

        assert result.exit_code == 0
        assert "RUN_START" in result.output
        assert "url=http://example" in result.output


class TestWorkflowCommands:
    """Test workflow commands and exit codes."""

    @patch("solarops.cli.main.workflows.deploy_terraform")
    def test_deploy_yes_and_options(self, mock_deploy):
        mock_deploy.return_value = {"run_id": RUN_ID, "status": "succeeded"}

        result = CliRunner().invoke(main, ["--region", "eu-west-1", "deploy", "--yes"])

        assert result.exit_code == 0
        settings, confirm = mock_deploy.call_args[0]
        assert settings.region == "eu-west-1"
        assert confirm("Do you want to continue?") is True

    @patch("solarops.cli.main.workflows.deploy_terraform")
    def test_failed_exit_code(self, mock_deploy):
        mock_deploy.return_value = {"run_id": RUN_ID, "status": "failed", "error": "boom"}

        result = CliRunner().invoke(main, ["--json", "deploy", "--yes"])

        assert result.exit_code == 1
        assert json.loads(result.output.strip().splitlines()[-1])["error"] == "boom"

    @patch("solarops.cli.main.workflows.destroy_terraform")
    def test_destroy_prompt(self, mock_destroy):
        def fake_destroy(settings, confirm, ask):
            assert ask("Type 'DESTROY' to confirm") == "DESTROY"
            return {"run_id": RUN_ID, "status": "succeeded"}
        mock_destroy.side_effect = fake_destroy

        result = CliRunner().invoke(main, ["destroy"], input="DESTROY\n")

        assert result.exit_code == 0

    @patch("solarops.cli.main.workflows.cleanup_aws")
    def test_cleanup_yes_keeps_iam(self, mock_cleanup):
        mock_cleanup.return_value = {"run_id": RUN_ID, "status": "cancelled"}

        result = CliRunner().invoke(main, ["cleanup", "--yes"])

        assert result.exit_code == 0
        _, _, ask = mock_cleanup.call_args[0]
        assert ask("type 'DELETE'") == "DELETE"
        assert mock_cleanup.call_args[1]["delete_iam"] is False

    @patch("solarops.cli.main.workflows.cleanup_aws")
    def test_cleanup_delete_iam(self, mock_cleanup):
        mock_cleanup.return_value = {"run_id": RUN_ID, "status": "succeeded"}

        CliRunner().invoke(main, ["cleanup", "--yes", "--delete-iam"])

        assert mock_cleanup.call_args[1]["delete_iam"] is True

    @patch("solarops.cli.main.workflows.quick_cleanup")
    def test_interrupt(self, mock_quick):
        mock_quick.side_effect = KeyboardInterrupt

        result = CliRunner().invoke(main, ["quick-cleanup", "--yes"])

        assert result.exit_code == 1
        assert "Interrupted by user" in result.output

    def test_bad_config_is_usage_error(self, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("min_nodes: 5\nmax_nodes: 2\n")

        result = CliRunner().invoke(main, ["--config", str(config), "setup-cluster"])

        assert result.exit_code == 2

    def test_malformed_config_is_usage_error(self, tmp_path):
        config = tmp_path / "broken.yaml"
        config.write_text("region: [us-west-2\n")

        result = CliRunner().invoke(main, ["--config", str(config), "setup-cluster"])

        assert result.exit_code == 2
        assert "not valid YAML" in result.output
