"""
Pytest configuration file.

Ensures the repo root is on sys.path so that 'import tradesim...' works
without an editable install, and provides shared bar fixtures.
"""
import sys
from pathlib import Path

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from tradesim.analytics.synthetic_data import generate_synthetic_bars  # noqa: E402
from tradesim.config.settings import reset_settings  # noqa: E402


@pytest.fixture
def synthetic_bars():
    """500 seeded GBM bars with non-trivial wicks and volume."""
    return generate_synthetic_bars(500, seed=42)


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Every test sees settings re-read from its own environment."""
    reset_settings()
    yield
    reset_settings()
