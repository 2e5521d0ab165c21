"""
Shared test fixtures for pyscratch tests.
"""
import pytest

from pyscratch.observability import shutdown_metrics
from pyscratch.printer import PrettyPrinter, WeakIdentityProvider
from pyscratch.sandbox import SandboxConfig, SandboxLevel


@pytest.fixture
def printer():
    return PrettyPrinter(WeakIdentityProvider())


@pytest.fixture
def inprocess_config():
    return SandboxConfig(level=SandboxLevel.NONE)


@pytest.fixture
def subprocess_config():
    return SandboxConfig(level=SandboxLevel.SUBPROCESS, startup_timeout=30)


@pytest.fixture(autouse=True)
def _reset_metrics():
    yield
    shutdown_metrics()
