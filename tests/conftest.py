"""
Shared pytest fixtures for the tootoo test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``db_file`` / ``app_config``: A file-backed database under ``tmp_path``
    and a matching ``AppConfig`` (lock files under ``tmp_path`` too).
  - ``seed_rows``: Inserts synthetic feature rows with a chosen trading value
    profile.
  - ``llm_output`` / ``scripted_backend``: Builders for LLM responses and a
    fake completion backend that replays canned answers.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import date
from typing import Callable, Generator, Optional

import pytest

from tootoo.config import AppConfig, DatabaseConfig, LlmConfig, UniverseConfig
from tootoo.db.connection import get_connection
from tootoo.db.repositories.feature_repo import FeatureRepository
from tootoo.db.schema import apply_schema
from tootoo.llm.base import Completion
from tootoo.models.features import FeatureRow

AS_OF = date(2026, 1, 15)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_file(tmp_path) -> str:
    """Path of a file-backed database with the schema applied."""
    path = str(tmp_path / "db" / "tootoo.db")
    with get_connection(path) as conn:
        apply_schema(conn)
    return path


@pytest.fixture
def app_config(db_file, tmp_path) -> AppConfig:
    """Config pointing at ``db_file`` with the stub LLM provider."""
    return AppConfig(
        database=DatabaseConfig(db_path=db_file, lock_dir=str(tmp_path / "locks")),
        universe=UniverseConfig(max_candidates=200, min_candidates=200),
        llm=LlmConfig(provider="stub", model="stub"),
    )


def make_feature_rows(
    as_of_date: date,
    count: int,
    trading_value: Callable[[int], Optional[float]] = lambda i: float(1_000_000 - i),
) -> list[FeatureRow]:
    return [
        FeatureRow(
            as_of_date=as_of_date,
            ticker=f"KRX:{i:06d}",
            name=f"Company {i:06d}",
            trading_value=trading_value(i),
            features={"ret_1d": i / 1000.0, "mom_5d": -i / 2000.0},
        )
        for i in range(1, count + 1)
    ]


@pytest.fixture
def seed_rows(db_file) -> Callable[..., list[FeatureRow]]:
    """Insert ``count`` feature rows into ``db_file`` and return them."""

    def _seed(as_of_date: date = AS_OF, count: int = 300, **kwargs) -> list[FeatureRow]:
        rows = make_feature_rows(as_of_date, count, **kwargs)
        with get_connection(db_file) as conn:
            FeatureRepository(conn).upsert_rows(rows)
        return rows

    return _seed


# ── LLM fixtures ──────────────────────────────────────────────────────────────

def build_llm_output(
    as_of_date: date = AS_OF,
    tickers: Optional[list[str]] = None,
    count: int = 20,
    **item_overrides,
) -> dict:
    tickers = tickers or [f"KRX:{i:06d}" for i in range(1, count + 1)]
    items = []
    for rank, ticker in enumerate(tickers[:count], start=1):
        item = {
            "rank": rank,
            "ticker": ticker,
            "name": f"Company {ticker[-6:]}",
            "rationale": ["Strong momentum.", "High liquidity.", "Sector tailwind."],
            "risk_notes": None,
            "confidence": 0.5,
        }
        item.update(item_overrides)
        items.append(item)
    return {
        "as_of_date": as_of_date.isoformat(),
        "generated_at": "2026-01-15T07:05:00Z",
        "items": items,
    }


@pytest.fixture
def llm_output() -> Callable[..., dict]:
    return build_llm_output


class ScriptedBackend:
    """Completion backend that replays canned texts and records prompts."""

    name = "scripted"

    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def complete(self, system: str, user: str) -> Completion:
        self.calls.append((system, user))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        text = response if isinstance(response, str) else json.dumps(response)
        return Completion(text=text, raw=text)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted_backend() -> Callable[[list], ScriptedBackend]:
    """Factory: ``scripted_backend([dict_or_text_or_exception, ...])``."""
    return ScriptedBackend
