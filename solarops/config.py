"""
Operational settings for the Solar System cluster.

Settings are resolved in order: built-in defaults, an optional YAML file,
SOLAROPS_* environment variables, then explicit overrides (CLI options).
"""

import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Any, Optional, Mapping

import yaml


ENV_PREFIX = "SOLAROPS_"


@dataclass
class Settings:
    """Names, sizing and paths used by every workflow."""
    cluster_name: str = "solar-system-cluster"
    region: str = "us-west-2"
    nodegroup_name: str = "solar-system-nodes"
    node_type: str = "t3.medium"
    min_nodes: int = 1
    max_nodes: int = 4
    desired_nodes: int = 2
    namespace: str = "solar-system"
    app_label: str = "solar-system"
    service_name: str = "solar-system-service"
    deployment_name: str = "solar-system"
    vpc_name: str = "solar-system-vpc"
    terraform_dir: str = "./terraform"
    tfvars_file: str = "terraform.tfvars"
    wait_timeout: int = 300
    ssh_public_key: str = "~/.ssh/id_rsa.pub"

    @property
    def stack_prefix(self) -> str:
        """Prefix eksctl gives every CloudFormation stack it owns."""
        return f"eksctl-{self.cluster_name}"

    @property
    def eksctl_vpc_name(self) -> str:
        return f"eksctl-{self.cluster_name}-cluster/VPC"

    @property
    def setup_nodegroup_name(self) -> str:
        return f"{self.cluster_name}-nodes"

    @property
    def ssh_key_path(self) -> Path:
        return Path(self.ssh_public_key).expanduser()

    def validate(self) -> None:
        """
        Check node group sizing.

        Raises:
            ValueError: If the node counts are inconsistent
        """
        if self.min_nodes < 0:
            raise ValueError(f"min_nodes must be >= 0, got {self.min_nodes}")
        if not self.min_nodes <= self.desired_nodes <= self.max_nodes:
            raise ValueError(
                f"Node counts must satisfy min <= desired <= max "
                f"(got {self.min_nodes} <= {self.desired_nodes} <= {self.max_nodes})"
            )
        if self.wait_timeout <= 0:
            raise ValueError(f"wait_timeout must be positive, got {self.wait_timeout}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_solarops_home() -> Path:
    """
    Get the directory holding run logs.

    Returns:
        Path: solarops home directory
    """
    home = os.environ.get("SOLAROPS_HOME", ".solarops")
    return Path(home).resolve()


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw value to the type of the named Settings field."""
    field_types = {f.name: f.type for f in fields(Settings)}
    if field_types.get(name) in (int, "int"):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Setting '{name}' must be an integer, got {value!r}")
    return str(value)


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Config file {config_path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    return data


def load_settings(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build Settings from defaults, a YAML file, the environment and overrides.

    Args:
        config_path: Optional YAML file path
        overrides: Explicit values, e.g. from CLI options. None values are ignored.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings

    Raises:
        ValueError: On unknown keys, bad types or inconsistent sizing
        FileNotFoundError: If config_path doesn't exist
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        for key, value in _read_yaml(path).items():
            if key not in known:
                raise ValueError(f"Unknown setting in {config_path}: {key}")
            values[key] = _coerce(key, value)

    for name in known:
        env_key = ENV_PREFIX + name.upper()
        if env_key in environ:
            values[name] = _coerce(name, environ[env_key])

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in known:
            raise ValueError(f"Unknown setting: {key}")
        values[key] = _coerce(key, value)

    settings = Settings(**values)
    settings.validate()
    return settings
