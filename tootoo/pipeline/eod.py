"""
End-of-day run coordinator.

One invocation produces at most one new snapshot row for one as-of date:

  START
    │  resolve as-of date            (InvalidDate → raised, nothing written)
    ▼
  LOCK_ACQUIRED                      (held by another process → LOCKED, no-op)
    │  success already stored?       (yes → ALREADY_EXISTS, provider not called)
    ▼
  UNIVERSE_BUILT                     (NoFeatureData / UndersizedUniverse
    │                                 → failed snapshot, provider not called)
    ▼
  PROVIDER_INVOKED                   (ProviderError → failed snapshot)
    │
    ├─► PERSISTED_SUCCESS            (DuplicateSuccess → ALREADY_EXISTS)
    └─► PERSISTED_FAILED
    ▼
  DONE                               lock released on every path

The existence check runs under the lock, so two concurrent runs for the
same date can never both reach the provider. A ``StoreError`` while saving
a success is recorded as a failed snapshot on a best-effort basis and then
re-raised; the run never reports success it did not persist.

Usage::

    result = EodRunCoordinator(config).run("2026-01-15")
    print(result.outcome, result.snapshot_id)
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union
from uuid import uuid4

from tootoo.config import AppConfig
from tootoo.db.connection import get_connection
from tootoo.db.lock import AsOfDateLock
from tootoo.db.repositories.snapshot_repo import SnapshotRepository
from tootoo.errors import (
    DuplicateSuccess,
    LockNotAcquired,
    ProviderError,
    StoreError,
    UndersizedUniverse,
    UniverseError,
)
from tootoo.llm.base import LlmProvider
from tootoo.market.calendar import resolve_as_of_date
from tootoo.models.recommendation import RecommendationSnapshot, SnapshotStatus
from tootoo.universe.builder import CandidateSet, CandidateUniverseBuilder
from tootoo.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


# ── Result types ──────────────────────────────────────────────────────────────

class RunState(str, Enum):
    START = "START"
    LOCK_ACQUIRED = "LOCK_ACQUIRED"
    UNIVERSE_BUILT = "UNIVERSE_BUILT"
    PROVIDER_INVOKED = "PROVIDER_INVOKED"
    PERSISTED_SUCCESS = "PERSISTED_SUCCESS"
    PERSISTED_FAILED = "PERSISTED_FAILED"
    DONE = "DONE"


class RunOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ALREADY_EXISTS = "already_exists"
    LOCKED = "locked"
    DRY_RUN = "dry_run"


@dataclass
class EodRunResult:
    """Complete result of one EOD run.

    Attributes:
        as_of_date:      Resolved as-of date.
        outcome:         Final outcome (``None`` while in flight).
        snapshot_id:     Stored snapshot id (success or failed), if any.
        error:           Error text for failed runs.
        candidate_count: Size of the candidate universe, once built.
        states:          State trail, in order.
        started_at:      UTC datetime when the run started.
        finished_at:     UTC datetime when the run finished.
    """

    as_of_date:      date
    outcome:         Optional[RunOutcome] = None
    snapshot_id:     Optional[str]        = None
    error:           Optional[str]        = None
    candidate_count: Optional[int]        = None
    states:          list[RunState]       = field(default_factory=list)
    started_at:      Optional[datetime]   = None
    finished_at:     Optional[datetime]   = None

    @property
    def is_noop(self) -> bool:
        return self.outcome in (RunOutcome.ALREADY_EXISTS, RunOutcome.LOCKED)


# ── Coordinator ───────────────────────────────────────────────────────────────

class EodRunCoordinator:
    """Drives one EOD run through its states.

    Args:
        config: Application configuration.
        provider: LLM capability. Built from ``config.llm`` on first use
            when omitted, so dry runs and no-op runs need no credentials.
        db_path: Override for ``config.database.db_path``.
        builder: Override for the universe builder.
    """

    def __init__(
        self,
        config: AppConfig,
        provider: Optional[LlmProvider] = None,
        db_path: str | None = None,
        builder: Optional[CandidateUniverseBuilder] = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.builder = builder or CandidateUniverseBuilder(config.universe)
        self._provider = provider
        self._owns_provider = provider is None

    def close(self) -> None:
        """Close the provider if the coordinator built it."""
        if self._owns_provider and self._provider is not None:
            self._provider.close()
            self._provider = None

    def __enter__(self) -> "EodRunCoordinator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def provider(self) -> LlmProvider:
        if self._provider is None:
            from tootoo.llm.factory import build_provider

            self._provider = build_provider(self.config.llm)
        return self._provider

    @property
    def provider_name(self) -> str:
        return self._provider.name if self._provider is not None else self.config.llm.provider

    def _connect(self):
        return get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def run(
        self,
        requested_date: Union[str, date, None] = None,
        dry_run: bool = False,
        wait_for_lock: bool = False,
        lock_timeout: Optional[float] = None,
        now_utc: Optional[datetime] = None,
    ) -> EodRunResult:
        """Run the EOD job once.

        Args:
            requested_date: Explicit as-of date, or ``None`` for the most
                recent authoritative date.
            dry_run: Resolve and build the universe only; no provider call,
                no lock, no writes.
            wait_for_lock: Block until the date lock is free instead of
                returning ``LOCKED``.
            lock_timeout: Bound on the wait when ``wait_for_lock``.
            now_utc: Clock override for tests.

        Returns:
            :class:`EodRunResult` describing the outcome.

        Raises:
            InvalidDate: ``requested_date`` is malformed.
            StoreError: The snapshot store failed; nothing claims success.
        """
        as_of_date = resolve_as_of_date(requested_date, now_utc, self.config.market)
        result = EodRunResult(as_of_date=as_of_date, started_at=utcnow())
        self._advance(result, RunState.START)

        if dry_run:
            return self._dry_run(result)

        lock = AsOfDateLock(
            self.config.database.resolved_lock_dir(),
            as_of_date,
            blocking=wait_for_lock,
            timeout=lock_timeout,
        )
        try:
            lock.acquire()
        except LockNotAcquired as exc:
            logger.warning("%s; skipping run.", exc)
            return self._finish(result, RunOutcome.LOCKED)

        try:
            self._advance(result, RunState.LOCK_ACQUIRED)
            return self._run_locked(result)
        finally:
            lock.release()

    # ── Steps ─────────────────────────────────────────────────────────────────

    def _run_locked(self, result: EodRunResult) -> EodRunResult:
        as_of_date = result.as_of_date

        try:
            with self._connect() as conn:
                if SnapshotRepository(conn).success_exists(as_of_date):
                    logger.info(
                        "Successful snapshot already exists for as_of_date=%s; nothing to do.",
                        as_of_date,
                    )
                    return self._finish(result, RunOutcome.ALREADY_EXISTS)

                try:
                    candidate_set = self._build_universe(conn, as_of_date)
                    universe_error = None
                except UniverseError as exc:
                    universe_error = exc
        except sqlite3.Error as exc:
            raise StoreError(f"Store read failed for as_of_date={as_of_date}: {exc}") from exc

        if universe_error is not None:
            logger.error("Universe build failed for as_of_date=%s: %s", as_of_date, universe_error)
            return self._record_failure(result, str(universe_error), raw_response=None)

        result.candidate_count = len(candidate_set)
        self._advance(result, RunState.UNIVERSE_BUILT)

        try:
            generation = self.provider.generate(candidate_set.candidates, as_of_date)
        except ProviderError as exc:
            self._advance(result, RunState.PROVIDER_INVOKED)
            logger.error("Provider failed for as_of_date=%s: %s", as_of_date, exc)
            return self._record_failure(result, str(exc), raw_response=exc.raw_response)
        self._advance(result, RunState.PROVIDER_INVOKED)

        snapshot = RecommendationSnapshot(
            snapshot_id=str(uuid4()),
            as_of_date=as_of_date,
            generated_at=generation.payload.generated_at,
            provider=self.provider_name,
            status=SnapshotStatus.SUCCESS,
            raw_response=generation.raw_response,
        )
        try:
            with self._connect() as conn:
                SnapshotRepository(conn).insert_snapshot(snapshot, generation.payload.items)
        except DuplicateSuccess:
            return self._finish(result, RunOutcome.ALREADY_EXISTS)
        except StoreError as exc:
            logger.error("Snapshot store failed for as_of_date=%s: %s", as_of_date, exc)
            self._try_record_store_failure(result, exc, generation.raw_response)
            raise

        result.snapshot_id = snapshot.snapshot_id
        self._advance(result, RunState.PERSISTED_SUCCESS)
        return self._finish(result, RunOutcome.SUCCESS)

    def _build_universe(self, conn, as_of_date: date) -> CandidateSet:
        candidate_set = self.builder.build(as_of_date, conn=conn)
        minimum = self.config.universe.min_candidates
        if len(candidate_set) < minimum:
            raise UndersizedUniverse(as_of_date, len(candidate_set), minimum)
        return candidate_set

    def _dry_run(self, result: EodRunResult) -> EodRunResult:
        try:
            with self._connect() as conn:
                candidate_set = self._build_universe(conn, result.as_of_date)
        except UniverseError as exc:
            result.error = str(exc)
            logger.warning("Dry run for as_of_date=%s: %s", result.as_of_date, exc)
            return self._finish(result, RunOutcome.DRY_RUN)
        result.candidate_count = len(candidate_set)
        self._advance(result, RunState.UNIVERSE_BUILT)
        logger.info(
            "Dry run for as_of_date=%s: %d candidates (%s, %d rows available)",
            result.as_of_date, len(candidate_set), candidate_set.source,
            candidate_set.rows_available,
        )
        return self._finish(result, RunOutcome.DRY_RUN)

    def _record_failure(
        self, result: EodRunResult, error: str, raw_response: Optional[str]
    ) -> EodRunResult:
        snapshot = RecommendationSnapshot(
            snapshot_id=str(uuid4()),
            as_of_date=result.as_of_date,
            generated_at=utcnow(),
            provider=self.provider_name,
            status=SnapshotStatus.FAILED,
            error=error,
            raw_response=raw_response,
        )
        with self._connect() as conn:
            SnapshotRepository(conn).insert_snapshot(snapshot)
        result.snapshot_id = snapshot.snapshot_id
        result.error = error
        self._advance(result, RunState.PERSISTED_FAILED)
        return self._finish(result, RunOutcome.FAILED)

    def _try_record_store_failure(
        self, result: EodRunResult, exc: StoreError, raw_response: Optional[str]
    ) -> None:
        try:
            self._record_failure(result, f"store error: {exc}", raw_response)
        except Exception as inner:
            logger.error(
                "Could not record failed snapshot for as_of_date=%s: %s",
                result.as_of_date, inner,
            )

    # ── State bookkeeping ─────────────────────────────────────────────────────

    def _advance(self, result: EodRunResult, state: RunState) -> None:
        result.states.append(state)
        logger.info(
            "EOD state %s | as_of_date=%s",
            state.value, result.as_of_date,
            extra={"as_of_date": result.as_of_date.isoformat(), "state": state.value},
        )

    def _finish(self, result: EodRunResult, outcome: RunOutcome) -> EodRunResult:
        result.outcome = outcome
        result.finished_at = utcnow()
        self._advance(result, RunState.DONE)
        logger.info(
            "EOD run finished | as_of_date=%s outcome=%s snapshot_id=%s",
            result.as_of_date, outcome.value, result.snapshot_id,
        )
        return result
