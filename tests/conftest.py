import pytest


@pytest.fixture(autouse=True)
def solarops_home(tmp_path, monkeypatch):
    """Keep run logs inside the test's temp directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("SOLAROPS_HOME", str(home))
    for name in ("SOLAROPS_REGION", "SOLAROPS_CLUSTER_NAME", "SOLAROPS_TERRAFORM_DIR"):
        monkeypatch.delenv(name, raising=False)
    return home
