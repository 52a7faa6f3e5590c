import pytest
from click.testing import CliRunner

from ape_safe_coordinator._cli import cli as coordinator_cli
from ape_safe_coordinator.context import CoordinatorContext


# NOTE: Every test gets its own data folder through the `coordinator` fixture
@pytest.fixture(autouse=True)
def patch_coordinator(monkeypatch, coordinator):
    monkeypatch.setattr(CoordinatorContext, "from_config", classmethod(lambda cls: coordinator))
    yield coordinator


@pytest.fixture
def runner():
    yield CliRunner()


@pytest.fixture
def cli():
    return coordinator_cli
