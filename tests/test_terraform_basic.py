"""
Basic tests for the Terraform, kubectl and eksctl wrappers.
"""

import json
from pathlib import Path

from unittest.mock import patch

from solarops import terraform, kube, eksctl
from solarops.config import Settings
from solarops.errors import CommandError
from solarops.runner import CommandResult


def _result(argv, lines=(), returncode=0):
    return CommandResult(argv=list(argv), returncode=returncode, lines=list(lines))


class TestTfvars:
    """Test variables file handling."""

    def test_existing_tfvars_is_kept(self, tmp_path):
        (tmp_path / "terraform.tfvars").write_text('cluster_name = "mine"\n')
        (tmp_path / "terraform.tfvars.example").write_text('cluster_name = "example"\n')

        path = terraform.ensure_tfvars(tmp_path, Settings())

        assert path.name == "terraform.tfvars"
        assert "mine" in path.read_text()

    def test_copied_from_example(self, tmp_path):
        (tmp_path / "terraform.tfvars.example").write_text('cluster_name = "example"\n')

        path = terraform.ensure_tfvars(tmp_path, Settings())

        assert path == tmp_path / "terraform.tfvars"
        assert "example" in path.read_text()

    def test_written_from_settings(self, tmp_path):
        path = terraform.ensure_tfvars(tmp_path, Settings(region="eu-west-1", max_nodes=5))

        assert path.name == "terraform.tfvars.json"
        data = json.loads(path.read_text())
        assert data["aws_region"] == "eu-west-1"
        assert data["node_max_size"] == 5


class TestStateChecks:
    """Test init/state detection and plan files."""

    def test_is_initialized(self, tmp_path):
        assert not terraform.is_initialized(tmp_path)
        (tmp_path / ".terraform").mkdir()
        assert terraform.is_initialized(tmp_path)

    def test_has_state(self, tmp_path):
        assert not terraform.has_state(tmp_path)
        (tmp_path / ".terraform").mkdir()
        (tmp_path / ".terraform" / "terraform.tfstate").write_text("{}")
        assert terraform.has_state(tmp_path)

    def test_remove_plan_files(self, tmp_path):
        (tmp_path / "tfplan").write_text("x")
        assert terraform.remove_plan_files(tmp_path) == ["tfplan"]
        assert not (tmp_path / "tfplan").exists()
        assert terraform.remove_plan_files(tmp_path) == []


class TestTerraformCommands:
    """Test command lines and output parsing."""

    def test_summarize_plan(self):
        output = "\n".join([
            "  # aws_vpc.main will be created",
            "  # aws_eks_cluster.main will be created",
            "  # aws_security_group.x will be updated in-place",
            "  # aws_subnet.old will be destroyed",
        ])
        assert terraform.summarize_plan(output) == {"adds": 2, "changes": 1, "destroys": 1}

    @patch("solarops.terraform.run_command")
    def test_plan_args(self, mock_run, tmp_path):
        mock_run.return_value = _result(["terraform"], ["# a will be created"])

        summary = terraform.plan(tmp_path, "terraform.tfvars")

        argv = mock_run.call_args[0][0]
        assert argv[:2] == ["terraform", "plan"]
        assert "-var-file=terraform.tfvars" in argv
        assert "-out=tfplan" in argv
        assert mock_run.call_args[1]["cwd"] == tmp_path
        assert summary["adds"] == 1

    @patch("solarops.terraform.run_command")
    def test_plan_destroy_args(self, mock_run, tmp_path):
        mock_run.return_value = _result(["terraform"], ["# a will be destroyed"])

        summary = terraform.plan_destroy(tmp_path, "terraform.tfvars")

        argv = mock_run.call_args[0][0]
        assert "-destroy" in argv
        assert "-out=destroy-plan" in argv
        assert summary["destroys"] == 1

    @patch("solarops.terraform.run_command")
    def test_outputs_parsed(self, mock_run, tmp_path):
        raw = {"cluster_name": {"value": "solar-system-cluster", "type": "string"},
               "aws_region": {"value": "us-west-2", "type": "string"}}
        mock_run.return_value = _result(["terraform"], json.dumps(raw).splitlines())

        assert terraform.outputs(tmp_path) == {"cluster_name": "solar-system-cluster", "aws_region": "us-west-2"}

    @patch("solarops.terraform.run_command")
    def test_outputs_failure_is_empty(self, mock_run, tmp_path):
        mock_run.return_value = _result(["terraform"], ["Error: no state"], returncode=1)
        assert terraform.outputs(tmp_path) == {}

    @patch("solarops.terraform.run_command")
    def test_output_raw_missing(self, mock_run, tmp_path):
        mock_run.return_value = _result(["terraform"], ["Warning: No outputs found"], returncode=1)
        assert terraform.output_raw(tmp_path, "cluster_name") is None

    @patch("solarops.terraform.run_command")
    def test_show_truncates(self, mock_run, tmp_path):
        mock_run.return_value = _result(["terraform"], [f"line {i}" for i in range(50)])
        assert len(terraform.show(tmp_path, 20)) == 20


class TestKubeAndEksctl:
    """Test kubectl and eksctl command lines."""

    @patch("solarops.kube.run_command")
    def test_wait_for_load_balancer(self, mock_run):
        kube.wait_for_load_balancer("solar-system-service", "solar-system", 300)

        argv = mock_run.call_args[0][0]
        assert "--for=jsonpath={.status.loadBalancer.ingress}" in argv
        assert "service/solar-system-service" in argv
        assert "--timeout=300s" in argv

    @patch("solarops.kube.run_command")
    def test_load_balancer_hostname_pending(self, mock_run):
        mock_run.return_value = _result(["kubectl"], [""])
        assert kube.load_balancer_hostname("svc", "ns") is None

        mock_run.return_value = _result(["kubectl"], ["abc.us-west-2.elb.amazonaws.com"])
        assert kube.load_balancer_hostname("svc", "ns") == "abc.us-west-2.elb.amazonaws.com"

    @patch("solarops.kube.command_succeeds", return_value=False)
    def test_forget_cluster_tolerates_missing_entries(self, mock_succeeds):
        kube.forget_cluster("solar-system-cluster")
        kinds = [call[0][0][2] for call in mock_succeeds.call_args_list]
        assert kinds == ["delete-cluster", "delete-context"]

    def test_create_cluster_args_with_ssh(self):
        argv = eksctl.create_cluster_args(Settings(), Path("/home/dev/.ssh/id_rsa.pub"))

        assert argv[:3] == ["eksctl", "create", "cluster"]
        assert argv[argv.index("--nodegroup-name") + 1] == "solar-system-cluster-nodes"
        assert argv[argv.index("--nodes") + 1] == "2"
        assert "--managed" in argv and "--with-oidc" in argv
        assert argv[-3:] == ["--ssh-access", "--ssh-public-key", "/home/dev/.ssh/id_rsa.pub"]

    def test_create_cluster_args_without_ssh(self):
        assert "--ssh-access" not in eksctl.create_cluster_args(Settings())

    @patch("solarops.eksctl.run_command")
    def test_delete_cluster_failure_returns_false(self, mock_run):
        mock_run.side_effect = CommandError(["eksctl"], 1, ["Error: stack delete failed"])
        assert eksctl.delete_cluster("solar-system-cluster", "us-west-2") is False

    @patch("solarops.eksctl.run_command")
    def test_delete_cluster_waits(self, mock_run):
        assert eksctl.delete_cluster("solar-system-cluster", "us-west-2") is True
        assert "--wait" in mock_run.call_args[0][0]
