"""EodRunCoordinator against a file-backed database."""

from __future__ import annotations

import threading
from datetime import date, datetime, timezone

import pytest

from tootoo.config import UniverseConfig
from tootoo.db.connection import get_connection
from tootoo.db.lock import AsOfDateLock
from tootoo.db.repositories.snapshot_repo import SnapshotRepository
from tootoo.errors import InvalidDate, ProviderError, StoreError
from tootoo.llm.backends.stub import StubBackend
from tootoo.llm.client import RecommendationClient
from tootoo.models.recommendation import SnapshotStatus
from tootoo.pipeline.eod import EodRunCoordinator, RunOutcome, RunState

AS_OF = date(2026, 1, 15)


def _snapshots(db_file, as_of_date=AS_OF):
    with get_connection(db_file) as conn:
        return SnapshotRepository(conn).list_by_date(as_of_date)


class CountingProvider:
    """Wraps a RecommendationClient and counts generate() calls."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    @property
    def name(self):
        return self.inner.name

    def generate(self, candidates, as_of_date):
        self.calls += 1
        return self.inner.generate(candidates, as_of_date)


@pytest.fixture
def stub_provider():
    return CountingProvider(RecommendationClient(StubBackend()))


class TestHappyPath:
    def test_success_stores_twenty_ranked_items(self, app_config, seed_rows, db_file, stub_provider):
        seed_rows(count=300)
        result = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)

        assert result.outcome == RunOutcome.SUCCESS
        assert result.candidate_count == 200
        assert result.states == [
            RunState.START,
            RunState.LOCK_ACQUIRED,
            RunState.UNIVERSE_BUILT,
            RunState.PROVIDER_INVOKED,
            RunState.PERSISTED_SUCCESS,
            RunState.DONE,
        ]

        with get_connection(db_file) as conn:
            snap = SnapshotRepository(conn).get_success_by_date(AS_OF)
        assert snap.snapshot_id == result.snapshot_id
        assert snap.provider == "stub"
        assert [i.rank for i in snap.items] == list(range(1, 21))
        # Highest trading value first: make_feature_rows gives ticker 1 the largest.
        assert snap.items[0].ticker == "KRX:000001"
        assert snap.raw_response is not None

    def test_only_candidates_reach_the_provider(self, app_config, seed_rows, scripted_backend, llm_output):
        seed_rows(count=300)
        backend = scripted_backend([llm_output()])
        EodRunCoordinator(app_config, provider=RecommendationClient(backend)).run(AS_OF)
        _, user = backend.calls[0]
        assert "KRX:000200" in user
        assert "KRX:000201" not in user
        assert "trading_value" not in user

    def test_string_date_accepted(self, app_config, seed_rows, stub_provider):
        seed_rows(count=200)
        result = EodRunCoordinator(app_config, provider=stub_provider).run("2026-01-15")
        assert result.as_of_date == AS_OF
        assert result.outcome == RunOutcome.SUCCESS

    def test_default_date_from_clock(self, app_config, seed_rows, stub_provider):
        seed_rows(count=200)
        now = datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)  # 17:00 KST
        result = EodRunCoordinator(app_config, provider=stub_provider).run(now_utc=now)
        assert result.as_of_date == AS_OF
        assert result.outcome == RunOutcome.SUCCESS


class TestIdempotency:
    def test_rerun_is_noop_without_provider_call(self, app_config, seed_rows, db_file, stub_provider):
        seed_rows(count=300)
        coordinator = EodRunCoordinator(app_config, provider=stub_provider)
        first = coordinator.run(AS_OF)
        second = coordinator.run(AS_OF)

        assert first.outcome == RunOutcome.SUCCESS
        assert second.outcome == RunOutcome.ALREADY_EXISTS
        assert second.is_noop
        assert stub_provider.calls == 1
        assert len(_snapshots(db_file)) == 1

    def test_rerun_after_failure_can_succeed(self, app_config, seed_rows, db_file, stub_provider):
        first = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)
        assert first.outcome == RunOutcome.FAILED

        seed_rows(count=300)
        second = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)
        assert second.outcome == RunOutcome.SUCCESS

        statuses = sorted(s.status.value for s in _snapshots(db_file))
        assert statuses == ["failed", "success"]

    def test_concurrent_runs_store_one_success(self, app_config, seed_rows, db_file):
        seed_rows(count=300)
        barrier = threading.Barrier(4)
        outcomes = []
        errors = []

        def worker():
            try:
                barrier.wait()
                provider = RecommendationClient(StubBackend())
                outcomes.append(EodRunCoordinator(app_config, provider=provider).run(AS_OF).outcome)
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert outcomes.count(RunOutcome.SUCCESS) == 1
        assert set(outcomes) <= {RunOutcome.SUCCESS, RunOutcome.LOCKED, RunOutcome.ALREADY_EXISTS}
        assert [s.status for s in _snapshots(db_file)] == [SnapshotStatus.SUCCESS]


class TestLocking:
    def test_held_lock_returns_locked(self, app_config, seed_rows, db_file, stub_provider):
        seed_rows(count=300)
        with AsOfDateLock(app_config.database.resolved_lock_dir(), AS_OF):
            result = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)

        assert result.outcome == RunOutcome.LOCKED
        assert result.is_noop
        assert stub_provider.calls == 0
        assert _snapshots(db_file) == []

    def test_other_date_not_blocked(self, app_config, seed_rows, stub_provider):
        seed_rows(count=300)
        with AsOfDateLock(app_config.database.resolved_lock_dir(), date(2026, 1, 14)):
            result = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)
        assert result.outcome == RunOutcome.SUCCESS

    def test_lock_released_after_run(self, app_config, seed_rows, stub_provider):
        seed_rows(count=300)
        EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)
        lock = AsOfDateLock(app_config.database.resolved_lock_dir(), AS_OF)
        lock.acquire()
        lock.release()


class TestFailures:
    def test_no_feature_data_records_failed_snapshot(self, app_config, db_file, stub_provider):
        result = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)

        assert result.outcome == RunOutcome.FAILED
        assert "No feature data" in result.error
        assert stub_provider.calls == 0
        assert RunState.PERSISTED_FAILED in result.states
        snaps = _snapshots(db_file)
        assert len(snaps) == 1
        assert snaps[0].status == SnapshotStatus.FAILED
        assert snaps[0].items == ()

    def test_undersized_universe_records_failed_snapshot(self, app_config, seed_rows, db_file, stub_provider):
        seed_rows(count=150)
        result = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)

        assert result.outcome == RunOutcome.FAILED
        assert "150 rows (minimum 200)" in result.error
        assert stub_provider.calls == 0
        assert _snapshots(db_file)[0].status == SnapshotStatus.FAILED

    def test_trading_value_filter_can_undersize(self, app_config, seed_rows, stub_provider):
        seed_rows(count=300)
        config = app_config.model_copy(
            update={"universe": UniverseConfig(max_candidates=200, min_trading_value=999_850.0)}
        )
        result = EodRunCoordinator(config, provider=stub_provider).run(AS_OF)
        assert result.outcome == RunOutcome.FAILED
        assert stub_provider.calls == 0

    def test_provider_error_keeps_raw_response(self, app_config, seed_rows, db_file, scripted_backend, llm_output):
        seed_rows(count=300)
        backend = scripted_backend([llm_output(count=5), "garbage after repair"])
        result = EodRunCoordinator(app_config, provider=RecommendationClient(backend)).run(AS_OF)

        assert result.outcome == RunOutcome.FAILED
        assert "stage=repair" in result.error
        snap = _snapshots(db_file)[0]
        assert snap.status == SnapshotStatus.FAILED
        assert snap.raw_response == "garbage after repair"
        assert snap.provider == "scripted"

    def test_transport_error_records_failed_snapshot(self, app_config, seed_rows, db_file, scripted_backend):
        seed_rows(count=300)
        backend = scripted_backend([ProviderError("scripted", "transport", "timed out")])
        result = EodRunCoordinator(app_config, provider=RecommendationClient(backend)).run(AS_OF)

        assert result.outcome == RunOutcome.FAILED
        assert len(backend.calls) == 1
        assert _snapshots(db_file)[0].raw_response is None

    def test_invalid_date_raises_before_any_write(self, app_config, db_file, stub_provider):
        with pytest.raises(InvalidDate):
            EodRunCoordinator(app_config, provider=stub_provider).run("2026-13-45")
        with get_connection(db_file) as conn:
            count = conn.execute("SELECT COUNT(*) FROM recommendation_snapshots").fetchone()[0]
        assert count == 0

    def test_store_error_is_raised_and_never_reported_as_success(
        self, app_config, seed_rows, db_file, stub_provider, monkeypatch
    ):
        seed_rows(count=300)
        original = SnapshotRepository.insert_snapshot

        def flaky_insert(self, snapshot, items=()):
            if snapshot.status == SnapshotStatus.SUCCESS:
                raise StoreError("disk full")
            return original(self, snapshot, items)

        monkeypatch.setattr(SnapshotRepository, "insert_snapshot", flaky_insert)

        with pytest.raises(StoreError):
            EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF)

        snaps = _snapshots(db_file)
        assert [s.status for s in snaps] == [SnapshotStatus.FAILED]
        assert "store error: disk full" in snaps[0].error

    def test_unreadable_store_raises_store_error(self, app_config, tmp_path, stub_provider):
        empty_db = str(tmp_path / "no_schema.db")
        coordinator = EodRunCoordinator(app_config, provider=stub_provider, db_path=empty_db)
        with pytest.raises(StoreError, match="no such table"):
            coordinator.run(AS_OF)
        assert stub_provider.calls == 0


class TestProviderLifecycle:
    def test_injected_provider_not_closed(self, app_config, scripted_backend):
        backend = scripted_backend([])
        with EodRunCoordinator(app_config, provider=RecommendationClient(backend)):
            pass
        assert not backend.closed

    def test_built_provider_closed_on_exit(
        self, app_config, seed_rows, scripted_backend, llm_output, monkeypatch
    ):
        seed_rows(count=300)
        backend = scripted_backend([llm_output()])
        monkeypatch.setattr(
            "tootoo.llm.factory.build_provider", lambda config: RecommendationClient(backend)
        )
        with EodRunCoordinator(app_config) as coordinator:
            result = coordinator.run(AS_OF)
        assert result.outcome == RunOutcome.SUCCESS
        assert backend.closed


def _item_row_count(db_file):
    with get_connection(db_file) as conn:
        return conn.execute("SELECT COUNT(*) FROM recommendation_items").fetchone()[0]


class TestRepairPath:
    def test_unparseable_first_answer_repaired_to_success(
        self, app_config, seed_rows, db_file, scripted_backend, llm_output
    ):
        seed_rows(count=300)
        backend = scripted_backend(["{not json", llm_output()])
        result = EodRunCoordinator(app_config, provider=RecommendationClient(backend)).run(AS_OF)

        assert result.outcome == RunOutcome.SUCCESS
        assert result.states == [
            RunState.START,
            RunState.LOCK_ACQUIRED,
            RunState.UNIVERSE_BUILT,
            RunState.PROVIDER_INVOKED,
            RunState.PERSISTED_SUCCESS,
            RunState.DONE,
        ]
        assert len(backend.calls) == 2
        assert [s.status for s in _snapshots(db_file)] == [SnapshotStatus.SUCCESS]
        assert _item_row_count(db_file) == 20

    def test_unparseable_twice_records_failed_without_items(
        self, app_config, seed_rows, db_file, scripted_backend
    ):
        seed_rows(count=300)
        backend = scripted_backend(["{not json", "still {bad"])
        result = EodRunCoordinator(app_config, provider=RecommendationClient(backend)).run(AS_OF)

        assert result.outcome == RunOutcome.FAILED
        assert result.states == [
            RunState.START,
            RunState.LOCK_ACQUIRED,
            RunState.UNIVERSE_BUILT,
            RunState.PROVIDER_INVOKED,
            RunState.PERSISTED_FAILED,
            RunState.DONE,
        ]
        assert len(backend.calls) == 2
        snaps = _snapshots(db_file)
        assert [s.status for s in snaps] == [SnapshotStatus.FAILED]
        assert snaps[0].raw_response == "still {bad"
        assert _item_row_count(db_file) == 0


class TestDryRun:
    def test_dry_run_writes_nothing(self, app_config, seed_rows, db_file, stub_provider):
        seed_rows(count=300)
        result = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF, dry_run=True)

        assert result.outcome == RunOutcome.DRY_RUN
        assert result.candidate_count == 200
        assert stub_provider.calls == 0
        assert _snapshots(db_file) == []

    def test_dry_run_reports_universe_problem(self, app_config, db_file, stub_provider):
        result = EodRunCoordinator(app_config, provider=stub_provider).run(AS_OF, dry_run=True)
        assert result.outcome == RunOutcome.DRY_RUN
        assert "No feature data" in result.error
        assert _snapshots(db_file) == []

    def test_dry_run_needs_no_credentials(self, app_config, seed_rows, monkeypatch):
        seed_rows(count=300)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = app_config.model_copy(
            update={"llm": app_config.llm.model_copy(update={"provider": "openai"})}
        )
        result = EodRunCoordinator(config).run(AS_OF, dry_run=True)
        assert result.outcome == RunOutcome.DRY_RUN


class TestStubUniverse:
    def test_stub_universe_runs_without_features(self, app_config, stub_provider):
        config = app_config.model_copy(update={"universe": UniverseConfig(use_stub=True)})
        result = EodRunCoordinator(config, provider=stub_provider).run(AS_OF)
        assert result.outcome == RunOutcome.SUCCESS
        assert result.candidate_count == 200
