"""Shared test fixtures."""

import logging
from pathlib import Path

import numpy as np
import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def noise() -> np.ndarray:
    """Two seconds of deterministic white noise at 8 kHz."""
    rng = np.random.default_rng(1234)
    return rng.uniform(-0.8, 0.8, 16000).astype(np.float32)


@pytest.fixture(autouse=True)
def _reset_clipsync_logger():
    yield
    logger = logging.getLogger("clipsync")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
