"""Tests for storage.py and the state backends."""

import json
from datetime import datetime, timezone, timedelta

import pytest

import state as state_store
from storage import Storage

ROOM = "-1001"


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# ------------------------------------------------------------------ #
#  Daily stats
# ------------------------------------------------------------------ #
def test_upsert_creates_then_increments(storage, backend):
    storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Alice", 200, now=_utc(2026, 3, 1, 9, 0))
    row = storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Ally", 50, now=_utc(2026, 3, 1, 10, 0))
    assert row["words"] == 250
    assert row["name"] == "Ally"
    assert row["updated_at"] == _utc(2026, 3, 1, 10, 0).isoformat()
    assert backend.saved["daily_stats"][ROOM]["2026-03-01"]["p1"]["words"] == 250


def test_rows_are_keyed_by_room_and_day(storage):
    storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Alice", 200)
    storage.upsert_daily_stat("p1", "other", "2026-03-01", "Alice", 5)
    storage.upsert_daily_stat("p1", ROOM, "2026-03-02", "Alice", 7)
    assert storage.find_daily_stats(ROOM, "2026-03-01")[0]["words"] == 200
    assert storage.find_daily_stats("other", "2026-03-01")[0]["words"] == 5
    assert storage.find_daily_stats(ROOM, "2026-02-28") == []


def test_find_daily_stats_sorted(storage):
    storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Alice", 100)
    storage.upsert_daily_stat("p2", ROOM, "2026-03-01", "Bob", 900)
    rows = storage.find_daily_stats(ROOM, "2026-03-01")
    assert [r["name"] for r in rows] == ["Bob", "Alice"]


def test_aggregate_window_sums_inside_window(storage):
    storage.upsert_daily_stat("p1", ROOM, "2026-02-20", "Alice", 1000, now=_utc(2026, 2, 20))
    storage.upsert_daily_stat("p1", ROOM, "2026-02-25", "Alice", 100, now=_utc(2026, 2, 25))
    storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Alice B", 200, now=_utc(2026, 3, 1))
    storage.upsert_daily_stat("p2", ROOM, "2026-03-01", "Bob", 250, now=_utc(2026, 3, 1))

    rows = storage.aggregate_window(ROOM, "2026-02-23", "2026-03-01")
    assert rows == [
        {"participant_id": "p1", "name": "Alice B", "words": 300},
        {"participant_id": "p2", "name": "Bob", "words": 250},
    ]


def test_set_daily_words_overwrites(storage):
    storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Alice", 500)
    storage.set_daily_words("p1", ROOM, "2026-03-01", "Alice", 120)
    assert storage.find_daily_stats(ROOM, "2026-03-01")[0]["words"] == 120


# ------------------------------------------------------------------ #
#  Goals
# ------------------------------------------------------------------ #
def test_new_goal_deactivates_old(storage):
    storage.set_goal("p1", "Alice", 1000, "2026-03-01")
    storage.set_goal("p1", "Alice", 5000, "2026-03-02")
    goals = storage.doc["goals"]["p1"]
    assert [g["active"] for g in goals] == [False, True]
    assert storage.get_active_goal("p1")["target"] == 5000


def test_goal_delta_completes_one_way(storage):
    storage.set_goal("p1", "Alice", 100, "2026-03-01")
    assert storage.apply_goal_delta("p1", 60)["active"] is True
    done = storage.apply_goal_delta("p1", 60, today="2026-03-02")
    assert done["active"] is False
    assert done["completed_date"] == "2026-03-02"
    assert storage.apply_goal_delta("p1", 10) is None
    assert storage.doc["goals"]["p1"][0]["current"] == 120


# ------------------------------------------------------------------ #
#  Scheduled sprints
# ------------------------------------------------------------------ #
def test_due_scheduled_and_delete(storage):
    now = _utc(2026, 3, 1, 12, 0)
    late = storage.add_scheduled(ROOM, now + timedelta(minutes=30), 15, "p1")
    due = storage.add_scheduled(ROOM, now - timedelta(minutes=1), 20, "p1")
    assert [r["id"] for r in storage.due_scheduled(now)] == [due["id"]]
    assert storage.delete_scheduled(due["id"]) is True
    assert storage.delete_scheduled(due["id"]) is False
    assert [r["id"] for r in storage.list_scheduled(ROOM)] == [late["id"]]


def test_delete_scheduled_for_room(storage):
    now = _utc(2026, 3, 1, 12, 0)
    storage.add_scheduled(ROOM, now, 15, "p1")
    storage.add_scheduled(ROOM, now, 20, "p1")
    storage.add_scheduled("other", now, 20, "p1")
    assert storage.delete_scheduled_for_room(ROOM) == 2
    assert storage.delete_scheduled_for_room(ROOM) == 0
    assert len(storage.doc["scheduled"]) == 1


# ------------------------------------------------------------------ #
#  Blacklist, names, participants
# ------------------------------------------------------------------ #
def test_blacklist(storage):
    assert storage.blacklist_add("p1") is True
    assert storage.blacklist_add("p1") is False
    assert storage.is_blacklisted("p1")
    assert storage.blacklist_remove("p1") is True
    assert not storage.is_blacklisted("p1")


def test_rename_participant_rewrites_rows(storage):
    storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "5551234", 10)
    storage.upsert_daily_stat("p1", ROOM, "2026-03-02", "Al", 10)
    storage.set_goal("p1", "Al", 100, "2026-03-01")
    assert storage.rename_participant("p1", "Alice") == 2
    assert storage.name_override("p1") == "Alice"
    assert {r["name"] for r in storage.aggregate_window(ROOM, "2026-03-01")} == {"Alice"}
    assert storage.get_active_goal("p1")["name"] == "Alice"


def test_find_participant(storage):
    storage.remember_participant("101", "Alice Smith", "alice", ROOM)
    storage.remember_participant("102", "Bob", "", "other")
    assert storage.find_participant("101") == "101"
    assert storage.find_participant("@Alice") == "101"
    assert storage.find_participant("alice smith") == "101"
    assert storage.find_participant("bob") == "102"
    assert storage.find_participant("bob", room_id=ROOM) is None
    assert storage.find_participant("carol") is None


def test_remember_participant_only_writes_changes(storage, backend):
    storage.remember_participant("101", "Alice", "alice", ROOM)
    saves = backend.saves
    storage.remember_participant("101", "Alice", "alice", ROOM)
    assert backend.saves == saves
    storage.remember_participant("101", "Alice", "alice", "other")
    assert backend.saves == saves + 1
    assert storage.doc["participants"]["101"]["rooms"] == [ROOM, "other"]


def test_participant_name_prefers_override(storage):
    storage.remember_participant("101", "Alice", "alice", ROOM)
    assert storage.participant_name("101") == "Alice"
    storage.set_name_override("101", "Quill")
    assert storage.participant_name("101") == "Quill"


def test_known_rooms(storage):
    storage.remember_room(ROOM, "Writers")
    storage.remember_room("other", "Poets")
    storage.forget_room("other")
    assert storage.known_rooms() == [ROOM]


# ------------------------------------------------------------------ #
#  Failure and backends
# ------------------------------------------------------------------ #
def test_failed_flush_keeps_memory(failing_backend):
    storage = Storage(failing_backend)
    with pytest.raises(state_store.PersistenceError):
        storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Alice", 10)
    assert storage.find_daily_stats(ROOM, "2026-03-01")[0]["words"] == 10


def test_set_offset_skips_unchanged(storage, backend):
    storage.set_offset(0)
    assert backend.saves == 0
    storage.set_offset(7)
    assert backend.saved["offset"] == 7


def test_file_state_round_trip(tmp_path):
    path = tmp_path / "nested" / "state.json"
    backend = state_store.FileState(path)
    storage = Storage(backend)
    storage.upsert_daily_stat("p1", ROOM, "2026-03-01", "Alice", 42)

    reloaded = Storage(state_store.FileState(path))
    assert reloaded.find_daily_stats(ROOM, "2026-03-01")[0]["words"] == 42


def test_file_state_fills_missing_keys(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"offset": 9}), encoding="utf-8")
    doc = state_store.FileState(path).load()
    assert doc["offset"] == 9
    assert doc["sprints"] == {}
    assert doc["blacklist"] == []


def test_file_state_unreadable_raises_and_keeps_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(state_store.PersistenceError):
        Storage(state_store.FileState(path))
    assert path.read_text(encoding="utf-8") == "{not json"


def test_file_state_missing_file_starts_fresh(tmp_path):
    assert state_store.FileState(tmp_path / "state.json").load() == state_store.fresh_state()


def test_file_state_failed_save_leaves_no_temp_file(tmp_path):
    path = tmp_path / "state.json"
    backend = state_store.FileState(path)
    with pytest.raises(state_store.PersistenceError):
        backend.save({"offset": object()})
    assert list(tmp_path.glob("*.tmp")) == []
    assert not path.exists()


# ------------------------------------------------------------------ #
#  Gist backend
# ------------------------------------------------------------------ #
class _Resp:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data if data is not None else {}

    def json(self):
        return self._data


def _gist_with(doc):
    return {"files": {state_store.STATE_FILENAME: {"content": json.dumps(doc)}}}


@pytest.fixture
def patches(monkeypatch):
    """Record every PATCH sent to the gist."""
    sent = []

    def fake_patch(url, headers=None, json=None, timeout=None):
        sent.append(json)
        return _Resp(200)

    monkeypatch.setattr(state_store.requests, "patch", fake_patch)
    return sent


def test_gist_load_network_error_never_saves(monkeypatch, patches):
    def offline(url, headers=None, timeout=None):
        raise state_store.requests.ConnectionError("offline")

    monkeypatch.setattr(state_store.requests, "get", offline)
    with pytest.raises(state_store.PersistenceError):
        Storage(state_store.GistState("token", "gist"))
    assert patches == []


def test_gist_load_http_error_raises(monkeypatch, patches):
    monkeypatch.setattr(state_store.requests, "get",
                        lambda url, headers=None, timeout=None: _Resp(502))
    with pytest.raises(state_store.PersistenceError):
        state_store.GistState("token", "gist").load()
    assert patches == []


def test_gist_load_timeout_is_persistence_timeout(monkeypatch):
    def slow(url, headers=None, timeout=None):
        raise state_store.requests.Timeout("slow")

    monkeypatch.setattr(state_store.requests, "get", slow)
    with pytest.raises(state_store.PersistenceTimeout):
        state_store.GistState("token", "gist").load()


def test_gist_round_trip_keeps_existing_stats(monkeypatch, patches):
    doc = state_store.fresh_state()
    doc["daily_stats"] = {ROOM: {"2026-03-01": {"p1": {"name": "Alice", "words": 5000}}}}
    monkeypatch.setattr(state_store.requests, "get",
                        lambda url, headers=None, timeout=None: _Resp(200, _gist_with(doc)))

    storage = Storage(state_store.GistState("token", "gist"))
    storage.set_offset(7)

    saved = json.loads(patches[0]["files"][state_store.STATE_FILENAME]["content"])
    assert saved["offset"] == 7
    assert saved["daily_stats"][ROOM]["2026-03-01"]["p1"]["words"] == 5000


def test_gist_without_state_file_starts_fresh(monkeypatch):
    monkeypatch.setattr(state_store.requests, "get",
                        lambda url, headers=None, timeout=None: _Resp(200, {"files": {}}))
    assert state_store.GistState("token", "gist").load() == state_store.fresh_state()
