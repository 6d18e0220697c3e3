"""Per-room writing sprint state machine.

A room is Idle (no Sprint), Running (now < ends_at) or Running-expired
(now >= ends_at, still taking word counts until someone finishes it).
`SprintBook` owns the room -> Sprint map; the bot builds one at startup,
calls `restore()` once, and hands the same book to the dispatcher and the
scheduler. All calls happen on the bot loop, one at a time.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

import helpers
import reports
from clock import Alarms, utcnow
from helpers import to_iso, from_iso
from state import PersistenceError

SET = "set"
ADD = "add"


# ------------------------------------------------------------------ #
#  Errors (each carries the reply shown in the room)
# ------------------------------------------------------------------ #
class SprintError(RuntimeError):
    default_reply = "Something went wrong."

    def __init__(self, reply: str | None = None):
        self.reply = reply or self.default_reply
        super().__init__(self.reply)


class AlreadyRunning(SprintError):
    default_reply = "⚠️ Sprint already in progress!"


class NoActiveSprint(SprintError):
    default_reply = "❌ No sprint running."


class InvalidDuration(SprintError):
    default_reply = "⚠️ That's not a valid sprint length."


class InvalidAmount(SprintError):
    default_reply = "⚠️ Word counts must be whole numbers (0 or more)."


class NotFound(SprintError):
    default_reply = "❓ I don't know who that is."


class Unauthorized(SprintError):
    default_reply = "Not allowed."


# ------------------------------------------------------------------ #
#  Model
# ------------------------------------------------------------------ #
@dataclass
class Sprint:
    room_id: str
    duration: int
    started_at: datetime
    ends_at: datetime
    started_by: str = ""
    # participant_id -> {"name": str, "words": int}, in order of first submission
    participants: dict = field(default_factory=dict)
    times_up_sent: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.ends_at

    def to_snapshot(self) -> dict:
        return {
            "room_id": self.room_id,
            "duration": self.duration,
            "started_at": to_iso(self.started_at),
            "ends_at": to_iso(self.ends_at),
            "started_by": self.started_by,
            "participants": [
                {"participant_id": pid, "name": p["name"], "words": p["words"]}
                for pid, p in self.participants.items()
            ],
            "times_up_sent": self.times_up_sent,
        }

    @classmethod
    def from_snapshot(cls, snap: dict) -> "Sprint":
        return cls(
            room_id=snap["room_id"],
            duration=int(snap["duration"]),
            started_at=from_iso(snap["started_at"]),
            ends_at=from_iso(snap["ends_at"]),
            started_by=snap.get("started_by", ""),
            participants={
                p["participant_id"]: {"name": p["name"], "words": int(p["words"])}
                for p in snap.get("participants", [])
            },
            times_up_sent=snap.get("times_up_sent", False),
        )


@dataclass
class Ack:
    participant_id: str
    display_name: str
    mode: str
    amount: int
    total: int
    expired: bool


@dataclass
class FinishResult:
    text: str
    mentions: list = field(default_factory=list)       # [(participant_id, display_name)]
    standings: list = field(default_factory=list)      # ranked dicts
    completed_goals: list = field(default_factory=list)
    mention_from: int = 0                              # text index where names start


def words_per_minute(words: int, minutes: int) -> int:
    """Rounded words per minute, halves rounding up."""
    return math.floor(words / minutes + 0.5)


def check_duration(minutes) -> int:
    if (not isinstance(minutes, int) or isinstance(minutes, bool)
            or not helpers.MIN_SPRINT_MINUTES <= minutes <= helpers.MAX_SPRINT_MINUTES):
        raise InvalidDuration(
            f"⚠️ Sprints run from {helpers.MIN_SPRINT_MINUTES} to "
            f"{helpers.MAX_SPRINT_MINUTES} minutes.")
    return minutes


def check_amount(amount) -> int:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise InvalidAmount()
    return amount


def credit_words(storage, participant_id: str, room_id: str, date: str,
                 display_name: str, words: int, now: datetime | None = None) -> dict | None:
    """Add words to the day's stats and the active goal (best effort).

    Returns {participant_id, name, target} when this call completes the goal.
    """
    try:
        storage.upsert_daily_stat(participant_id, room_id, date, display_name, words, now=now)
    except PersistenceError as e:
        print(f"Warning: could not save daily stat for {participant_id} in {room_id}: {e}")

    goal = storage.get_active_goal(participant_id)
    if goal is None or words == 0:
        return None
    completes = goal["current"] + words >= goal["target"]
    target = goal["target"]
    try:
        storage.apply_goal_delta(participant_id, words, today=date)
    except PersistenceError as e:
        print(f"Warning: could not save goal progress for {participant_id}: {e}")
    if completes:
        return {"participant_id": participant_id, "name": display_name, "target": target}
    return None


# ------------------------------------------------------------------ #
#  Sprint book
# ------------------------------------------------------------------ #
class SprintBook:
    def __init__(self, storage, alarms: Alarms, notify: Callable[..., object],
                 tz: ZoneInfo, prefix: str = "/"):
        self.storage = storage
        self.alarms = alarms
        self.notify = notify
        self.tz = tz
        self.prefix = prefix
        self._sprints: dict[str, Sprint] = {}

    def get(self, room_id: str) -> Sprint | None:
        return self._sprints.get(room_id)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._sprints

    def __len__(self) -> int:
        return len(self._sprints)

    def _require(self, room_id: str) -> Sprint:
        sprint = self._sprints.get(room_id)
        if sprint is None:
            raise NoActiveSprint()
        return sprint

    # ---- durable mirror ----
    def _persist(self, sprint: Sprint) -> None:
        try:
            self.storage.save_sprint_snapshot(sprint.to_snapshot())
        except PersistenceError as e:
            print(f"Warning: could not save sprint snapshot for {sprint.room_id}: {e}")

    def _drop(self, room_id: str) -> None:
        self._sprints.pop(room_id, None)
        try:
            self.storage.delete_sprint_snapshot(room_id)
        except PersistenceError as e:
            print(f"Warning: could not delete sprint snapshot for {room_id}: {e}")

    # ---- expiry alarm ----
    def _arm(self, sprint: Sprint) -> None:
        room_id, started_at = sprint.room_id, sprint.started_at

        def times_up(now: datetime) -> None:
            current = self._sprints.get(room_id)
            # Finished, cancelled or replaced since the alarm was armed
            if current is None or current.started_at != started_at or current.times_up_sent:
                return
            current.times_up_sent = True
            self.notify(room_id, reports.times_up(self.prefix))
            self._persist(current)
            print(f"Time's up in {room_id}")

        self.alarms.arm(f"sprint:{room_id}", sprint.ends_at, times_up)

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #
    def restore(self, now: datetime | None = None) -> int:
        """Rehydrate unexpired snapshots and re-arm their alarms; drop the rest silently."""
        now = now or utcnow()
        restored = 0
        for snap in self.storage.list_sprint_snapshots():
            room_id = snap.get("room_id", "")
            try:
                sprint = Sprint.from_snapshot(snap)
            except (KeyError, TypeError, ValueError) as e:
                print(f"Warning: dropping unreadable sprint snapshot for {room_id}: {e}")
                self._drop(room_id)
                continue
            if sprint.ends_at <= now:
                self._drop(room_id)
                print(f"Discarded expired sprint snapshot for {room_id}")
                continue
            self._sprints[room_id] = sprint
            self._arm(sprint)
            restored += 1
            print(f"Restored sprint in {room_id} ({len(sprint.participants)} participants)")
        return restored

    def teardown(self) -> None:
        """Forget in-memory sprints. Snapshots stay, so restore() can pick them up again."""
        for room_id in list(self._sprints):
            self.alarms.cancel(f"sprint:{room_id}")
        self._sprints.clear()

    def start(self, room_id: str, duration: int, requested_by: str,
              now: datetime | None = None) -> Sprint:
        now = now or utcnow()
        if room_id in self._sprints:
            raise AlreadyRunning()
        check_duration(duration)

        sprint = Sprint(
            room_id=room_id,
            duration=duration,
            started_at=now,
            ends_at=now + timedelta(minutes=duration),
            started_by=requested_by,
        )
        self._sprints[room_id] = sprint
        self._persist(sprint)
        self._arm(sprint)
        self.notify(room_id, reports.sprint_started(duration))
        print(f"Sprint started in {room_id}: {duration} min by {requested_by}")
        return sprint

    def remaining(self, room_id: str, now: datetime | None = None) -> timedelta:
        now = now or utcnow()
        return self._require(room_id).ends_at - now

    def log_words(self, room_id: str, participant_id: str, display_name: str,
                  amount: int, mode: str = SET, now: datetime | None = None) -> Ack:
        now = now or utcnow()
        sprint = self._require(room_id)
        check_amount(amount)
        if mode not in (SET, ADD):
            raise ValueError(f"unknown word count mode {mode!r}")

        entry = sprint.participants.setdefault(participant_id, {"name": display_name, "words": 0})
        entry["name"] = display_name
        if mode == ADD:
            entry["words"] += amount
        else:
            entry["words"] = amount

        self._persist(sprint)
        return Ack(participant_id, display_name, mode, amount, entry["words"],
                   sprint.is_expired(now))

    def finish(self, room_id: str, date: str | None = None,
               now: datetime | None = None) -> FinishResult:
        """Rank the room's sprint, record stats and goals, and remove the sprint."""
        now = now or utcnow()
        sprint = self._require(room_id)
        date = date or helpers.local_date(now, self.tz)

        if not sprint.participants:
            self._drop(room_id)
            print(f"Sprint in {room_id} finished with no entries")
            return FinishResult(reports.no_entries())

        ranked = sorted(sprint.participants.items(), key=lambda kv: kv[1]["words"], reverse=True)
        standings = []
        completed = []
        for pid, p in ranked:
            standings.append({
                "participant_id": pid,
                "name": p["name"],
                "words": p["words"],
                "rate": words_per_minute(p["words"], sprint.duration),
            })
            done = credit_words(self.storage, pid, room_id, date, p["name"], p["words"], now=now)
            if done:
                completed.append(done)

        self._drop(room_id)
        print(f"Sprint finished in {room_id}: {len(standings)} participants")
        return FinishResult(
            text=reports.sprint_results(standings, completed, self.prefix),
            mentions=[(s["participant_id"], s["name"]) for s in standings],
            standings=standings,
            completed_goals=completed,
            mention_from=reports.results_body_start(),
        )

    def cancel(self, room_id: str) -> bool:
        """Drop the room's sprint without stats. False when there was none."""
        if room_id not in self._sprints:
            return False
        self._drop(room_id)
        print(f"Sprint cancelled in {room_id}")
        return True
