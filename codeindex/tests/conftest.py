from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("INDEX_RUN_DB_URI", None)
os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ.setdefault("EMBEDDING_DIMENSION", "256")
os.environ.setdefault("INDEX_ENRICH_ENABLED", "false")
os.environ.setdefault("INDEX_METRICS_ENABLED", "false")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
