"""Backfill: idempotency, resumption under both discovery strategies, failure isolation."""
import pytest

from errors import DiscoveryError
from factories import seed_user
from migrations import BackfillEngine, OffsetDiscovery, ParityChecker, ScanCursorDiscovery
from migrations.discovery import collect_all_users, seen_key
from schemas import TimerState, Todo, UserSettings

USERS = [f"user{n}@example.com" for n in range(5)]


@pytest.fixture
def seeded(legacy):
    for n, user_id in enumerate(USERS):
        seed_user(legacy, user_id, n)
    return USERS


def _engine(legacy, relational, ledger, discovery):
    return BackfillEngine(legacy, relational, ledger, discovery)


def _snapshot(relational, users):
    return {
        user_id: (
            relational.get_todos(user_id),
            relational.get_projects(user_id),
            relational.get_sessions(user_id),
            relational.get_pomodoro_logs(user_id),
            relational.get_settings(user_id),
            relational.get_focus(user_id),
        )
        for user_id in users
    }


def test_discovery_union_is_sorted(legacy, redis_client, seeded):
    legacy.save_timer("zed@example.com", TimerState(active_task_id="t", started_at=1, duration=1, type="work"))
    redis_client.set("github:someone:p1", "{}")
    assert collect_all_users(redis_client) == sorted(USERS + ["zed@example.com"])


def test_backfill_copies_everything(legacy, relational, ledger, redis_client, seeded):
    engine = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client))
    result = engine.run_batch(run_id="run-1", batch_size=50)

    assert result.status == "completed"
    assert result.scan_complete is True
    assert result.processed_users == len(USERS)
    assert result.failed_users == []

    checker = ParityChecker(legacy, relational)
    assert all(checker.check_user(u).matches for u in USERS)

    run = ledger.get("run-1")
    assert run.processed_users == run.total_users == len(USERS)
    assert run.finished_at is not None


def test_backfill_is_idempotent(legacy, relational, ledger, redis_client, seeded):
    engine = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client))
    engine.run_batch(run_id="first", batch_size=50)
    once = _snapshot(relational, USERS)

    engine.run_batch(run_id="second", batch_size=50)
    for user_id in USERS:
        engine.backfill_user(user_id)

    assert _snapshot(relational, USERS) == once


def test_backfill_overwrites_stale_destination(legacy, relational, ledger, redis_client, seeded):
    relational.save_todos(USERS[0], [Todo(id="stale", title="gone", created_at=1)])
    _engine(legacy, relational, ledger, OffsetDiscovery(redis_client)).backfill_user(USERS[0])
    assert "stale" not in {t.id for t in relational.get_todos(USERS[0])}


@pytest.mark.parametrize("strategy", ["offset", "cursor"])
def test_backfill_resumes_without_gaps_or_repeats(legacy, relational, ledger, redis_client, seeded, strategy):
    if strategy == "offset":
        discovery = OffsetDiscovery(redis_client)
    else:
        discovery = ScanCursorDiscovery(redis_client, scan_count=3)

    processed: list[str] = []
    original = BackfillEngine.backfill_user

    def tracking(self, user_id):
        processed.append(user_id)
        return original(self, user_id)

    engine = _engine(legacy, relational, ledger, discovery)
    engine.backfill_user = tracking.__get__(engine)

    # First engine instance stops after one batch; a fresh one resumes from the ledger.
    first = engine.run_batch(run_id="resumable", batch_size=2)
    assert first.status == "running"
    assert first.scan_complete is False

    resumed = _engine(legacy, relational, ledger, discovery)
    resumed.backfill_user = tracking.__get__(resumed)
    for _ in range(20):
        result = resumed.run_batch(run_id="resumable", batch_size=2)
        if result.scan_complete:
            break

    assert sorted(processed) == USERS
    assert len(processed) == len(set(processed))
    run = ledger.get("resumable")
    assert run.status == "completed"
    assert run.processed_users == len(USERS)
    assert run.total_users == len(USERS)


def test_run_without_id_resumes_latest_running(legacy, relational, ledger, redis_client, seeded):
    engine = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client))
    first = engine.run_batch(batch_size=2)
    second = engine.run_batch(batch_size=2)

    assert second.run_id == first.run_id
    assert ledger.get(first.run_id).processed_users == 4


def test_completed_run_starts_fresh(legacy, relational, ledger, redis_client, seeded):
    engine = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client))
    first = engine.run_batch(batch_size=50)
    second = engine.run_batch(batch_size=50)
    assert first.status == "completed"
    assert second.run_id != first.run_id


def test_one_user_failure_does_not_abort_batch(legacy, relational, ledger, redis_client, seeded, monkeypatch):
    broken_user = USERS[2]
    original = relational.save_todos

    def flaky(user_id, todos):
        if user_id == broken_user:
            raise RuntimeError("disk full")
        return original(user_id, todos)

    monkeypatch.setattr(relational, "save_todos", flaky)
    result = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client)).run_batch(run_id="r", batch_size=50)

    assert result.status == "failed"
    assert result.processed_users == len(USERS) - 1
    assert [f.user for f in result.failed_users] == [broken_user]
    assert "disk full" in result.failed_users[0].error

    run = ledger.get("r")
    assert run.processed_users == len(USERS) - 1
    assert broken_user in run.notes
    assert run.retry_users == [broken_user]
    assert relational.get_todos(USERS[3])


def test_discovery_failure_marks_run_failed(legacy, relational, ledger):
    class BrokenDiscovery:
        name = "broken"

        def page(self, cursor, limit, run_id):
            raise DiscoveryError("scan refused")

    engine = _engine(legacy, relational, ledger, BrokenDiscovery())
    with pytest.raises(DiscoveryError):
        engine.run_batch(run_id="doomed")

    run = ledger.get("doomed")
    assert run.status == "failed"
    assert "scan refused" in run.notes


def test_invalid_cursor_is_a_discovery_error(redis_client):
    with pytest.raises(DiscoveryError):
        OffsetDiscovery(redis_client).page("not-a-number", 10, "r")
    with pytest.raises(DiscoveryError):
        ScanCursorDiscovery(redis_client).page("garbage", 10, "r")


def test_single_user_mode(legacy, relational, ledger, seeded):
    engine = _engine(legacy, relational, ledger, OffsetDiscovery(legacy.client))
    result = engine.backfill_single_user(USERS[1])

    assert result.status == "completed"
    run = ledger.get(result.run_id)
    assert run.total_users == 1
    assert run.processed_users == 1
    assert [t.id for t in relational.get_todos(USERS[1])] != []
    assert relational.get_todos(USERS[0]) == []


def test_backfill_migrates_legacy_timer(legacy, relational, ledger, redis_client):
    legacy.save_todos("u1", [Todo(id="t1", title="Focus me", created_at=1)])
    legacy.save_timer(
        "u1",
        TimerState(active_task_id="t1", started_at=1000, duration=1500000, type="work", completed_pomodoros=2),
    )

    result = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client)).run_batch(batch_size=10)

    assert result.processed_users == 1
    focus = relational.get_focus("u1")
    assert focus.to_blob() == {
        "activeTaskId": "t1",
        "focusedAt": 1000,
        "pomodoro": {
            "startedAt": 1000,
            "duration": 1500000,
            "type": "work",
            "completedPomodoros": 2,
            "paused": False,
        },
    }
    assert legacy.get_timer("u1") is None
    assert legacy.get_focus("u1") == focus
    assert ParityChecker(legacy, relational).check_user("u1").matches


def test_cursor_scan_picks_up_user_who_gains_an_earlier_key(legacy, relational, ledger, redis_client):
    legacy.save_todos("a@example.com", [Todo(id="a1", title="A", created_at=1)])
    legacy.save_todos("b@example.com", [Todo(id="b1", title="B", created_at=1)])
    legacy.save_settings("a@example.com", UserSettings(theme="nothing"))
    legacy.save_settings("late@example.com", UserSettings(theme="paper"))

    processed: list[str] = []
    engine = _engine(legacy, relational, ledger, ScanCursorDiscovery(redis_client))
    original = engine.backfill_user

    def tracking(user_id):
        processed.append(user_id)
        return original(user_id)

    engine.backfill_user = tracking

    first = engine.run_batch(run_id="live", batch_size=2)
    assert first.cursor == "1:0"
    assert sorted(processed) == ["a@example.com", "b@example.com"]

    # Written after the todos prefix was scanned.
    legacy.insert_todo("late@example.com", Todo(id="l1", title="Late", created_at=2))

    for _ in range(20):
        result = engine.run_batch(run_id="live", batch_size=2)
        if result.scan_complete:
            break

    assert sorted(processed) == ["a@example.com", "b@example.com", "late@example.com"]
    assert relational.get_settings("late@example.com").theme == "paper"
    assert [t.id for t in relational.get_todos("late@example.com")] == ["l1"]
    run = ledger.get("live")
    assert run.status == "completed"
    assert run.processed_users == run.total_users == 3
    assert redis_client.exists(seen_key("live")) == 0


def test_cursor_scan_reports_each_user_once_across_pages(redis_client, legacy):
    for n in range(6):
        user_id = f"u{n}@example.com"
        legacy.save_todos(user_id, [])
        legacy.save_settings(user_id, UserSettings())
    discovery = ScanCursorDiscovery(redis_client, scan_count=2)

    reported: list[str] = []
    cursor = None
    for _ in range(50):
        page = discovery.page(cursor, 2, "once")
        reported.extend(page.users)
        discovery.mark_seen("once", page.users, page.complete)
        cursor = page.next_cursor
        if page.complete:
            break

    assert sorted(reported) == [f"u{n}@example.com" for n in range(6)]
    assert len(reported) == len(set(reported))


def test_resumed_run_retries_failed_user_before_completing(legacy, relational, ledger, redis_client, seeded, monkeypatch):
    flaky_user = USERS[0]
    original = relational.save_todos
    broken = {"on": True}

    def flaky(user_id, todos):
        if user_id == flaky_user and broken["on"]:
            raise RuntimeError("connection reset")
        return original(user_id, todos)

    monkeypatch.setattr(relational, "save_todos", flaky)
    engine = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client))

    for _ in range(10):
        result = engine.run_batch(run_id="retry", batch_size=2)
        if result.scan_complete:
            break

    run = ledger.get("retry")
    assert run.status == "failed"
    assert run.retry_users == [flaky_user]
    assert run.processed_users == len(USERS) - 1
    assert relational.get_todos(flaky_user) == []

    broken["on"] = False
    result = engine.run_batch(run_id="retry", batch_size=2)

    assert result.status == "completed"
    run = ledger.get("retry")
    assert run.status == "completed"
    assert run.retry_users == []
    assert run.processed_users == run.total_users == len(USERS)
    assert ParityChecker(legacy, relational).check_user(flaky_user).matches


def test_clean_batches_after_a_failure_retry_it_first(legacy, relational, ledger, redis_client, seeded, monkeypatch):
    flaky_user = USERS[1]
    original = relational.save_todos
    attempts: list[str] = []

    def fails_once(user_id, todos):
        attempts.append(user_id)
        if user_id == flaky_user and attempts.count(user_id) == 1:
            raise RuntimeError("timeout")
        return original(user_id, todos)

    monkeypatch.setattr(relational, "save_todos", fails_once)
    engine = _engine(legacy, relational, ledger, OffsetDiscovery(redis_client))

    assert engine.run_batch(run_id="r2", batch_size=2).status == "failed"
    second = engine.run_batch(run_id="r2", batch_size=2)
    assert second.status == "running"
    assert attempts[2] == flaky_user

    for _ in range(10):
        if engine.run_batch(run_id="r2", batch_size=2).scan_complete:
            break
    run = ledger.get("r2")
    assert run.status == "completed"
    assert run.processed_users == run.total_users == len(USERS)
