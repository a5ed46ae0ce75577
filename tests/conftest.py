"""Root-level test configuration for coder-lifecycle.

Unit tests live in tests/unit/ and run without terraform, kubectl, scw or
network access; every adapter is replaced by an in-memory fake.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from coder_lifecycle.telemetry import ROOT_LOGGER_NAME, reset_tracer


@pytest.fixture(scope="session")
def repo_root() -> Path:
    """Path to the repository root."""
    return Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def _reset_observability() -> Generator[None, None, None]:
    """Give every test default structlog config, no log handlers and a fresh tracer."""
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    reset_tracer()
