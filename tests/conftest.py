"""
Shared pytest fixtures for the TPU harness test suite.

This module provides reusable fixtures for:
- Host-only sessions (``local://cpu``) that need no server or torch_xla
- A stand-in server command and a listening TCP endpoint
- Forcing the "PyTorch/XLA not installed" code path
"""

import socket
import sys

import numpy as np
import pytest

from tpu_harness import xla_compat
from tpu_harness.config import HarnessConfig, SessionConfig
from tpu_harness.session import Session


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: launches a server process or probes TCP endpoints")
    config.addinivalue_line("markers", "slow: full-size model inference")


# ============================================================================
# Session Fixtures
# ============================================================================

@pytest.fixture
def local_config():
    """Host-only harness configuration."""
    return HarnessConfig.for_local()


@pytest.fixture
def session():
    """Open host-only session, closed after the test."""
    session = Session(SessionConfig(target="local://cpu")).open()
    yield session
    session.close()


@pytest.fixture
def host_matrix():
    """Deterministic float32 host matrix."""
    return np.arange(12, dtype=np.float32).reshape(3, 4)


# ============================================================================
# Server and Endpoint Fixtures
# ============================================================================

@pytest.fixture
def sleeper_command():
    """Command that runs like a server until killed."""
    return [sys.executable, "-c", "import time; time.sleep(60)"]


@pytest.fixture
def listening_port():
    """Port of a local socket accepting connections."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(16)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def closed_port():
    """Port nothing is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def no_xla(monkeypatch):
    """Behave as if torch_xla were not installed."""
    monkeypatch.setattr(xla_compat, "is_xla_available", lambda: False)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove harness and Colab environment variables."""
    for name in ("TPU_HARNESS_TARGET", "TPU_HARNESS_SERVER", "TPU_HARNESS_LOG_LEVEL",
                 "TPU_HARNESS_JSON_LOGS", "COLAB_TPU_ADDR", "COLAB_GPU", "XRT_TPU_CONFIG"):
        monkeypatch.delenv(name, raising=False)
