"""Durable store for stats, goals, schedules, blacklist and sprint snapshots.

All data lives in one JSON-serializable document (see `state.DEFAULT_STATE`).
Every mutation updates the in-memory document first and then writes the
whole document through the backend, so a failed write (PersistenceError)
never loses the change in memory; the next successful write carries it.

Document layout:
    daily_stats:  {room_id: {date: {participant_id: {name, words, updated_at}}}}
    goals:        {participant_id: [{target, current, active, started_date, name, ...}]}
    scheduled:    [{id, room_id, start_at, duration, created_by}]
    blacklist:    [participant_id]
    sprints:      {room_id: sprint snapshot}
    names:        {participant_id: custom display name}
    participants: {participant_id: {name, username, rooms: [room_id]}}
    rooms:        {room_id: {title}}
"""

import uuid
from datetime import datetime

from clock import utcnow
from helpers import to_iso, from_iso


class Storage:
    def __init__(self, backend, doc: dict | None = None):
        self.backend = backend
        self.doc = doc if doc is not None else backend.load()

    def flush(self) -> None:
        """Write the whole document. Raises state.PersistenceError on failure."""
        self.backend.save(self.doc)

    # ------------------------------------------------------------------ #
    #  Update offset
    # ------------------------------------------------------------------ #
    @property
    def offset(self) -> int:
        return self.doc.get("offset", 0)

    def set_offset(self, offset: int) -> None:
        if offset == self.offset:
            return
        self.doc["offset"] = offset
        self.flush()

    # ------------------------------------------------------------------ #
    #  Daily stats
    # ------------------------------------------------------------------ #
    def _day_rows(self, room_id: str, date: str) -> dict:
        return self.doc["daily_stats"].setdefault(room_id, {}).setdefault(date, {})

    def upsert_daily_stat(self, participant_id: str, room_id: str, date: str,
                          display_name: str, words_delta: int,
                          now: datetime | None = None) -> dict:
        """Increment a participant's words for one room and day, creating the row if needed."""
        now = now or utcnow()
        rows = self._day_rows(room_id, date)
        row = rows.setdefault(participant_id, {"name": display_name, "words": 0})
        row["name"] = display_name
        row["words"] += words_delta
        row["updated_at"] = to_iso(now)
        self.flush()
        return row

    def set_daily_words(self, participant_id: str, room_id: str, date: str,
                        display_name: str, words: int,
                        now: datetime | None = None) -> dict:
        """Overwrite a participant's words for one room and day (owner corrections)."""
        now = now or utcnow()
        rows = self._day_rows(room_id, date)
        row = rows.setdefault(participant_id, {"name": display_name, "words": 0})
        row["words"] = words
        row["updated_at"] = to_iso(now)
        self.flush()
        return row

    def find_daily_stats(self, room_id: str, date: str) -> list[dict]:
        """Rows for one room and day, most words first."""
        rows = self.doc["daily_stats"].get(room_id, {}).get(date, {})
        result = [
            {"participant_id": pid, "name": row["name"], "words": row["words"]}
            for pid, row in rows.items()
        ]
        return sorted(result, key=lambda r: r["words"], reverse=True)

    def aggregate_window(self, room_id: str, since_date: str,
                         until_date: str | None = None) -> list[dict]:
        """Sum words per participant over [since_date, until_date], most words first.

        The display name comes from the participant's most recently updated row.
        """
        totals = {}
        for date, rows in self.doc["daily_stats"].get(room_id, {}).items():
            if date < since_date or (until_date and date > until_date):
                continue
            for pid, row in rows.items():
                entry = totals.setdefault(pid, {
                    "participant_id": pid, "name": row["name"], "words": 0, "_seen": "",
                })
                entry["words"] += row["words"]
                seen = row.get("updated_at", date)
                if seen >= entry["_seen"]:
                    entry["name"] = row["name"]
                    entry["_seen"] = seen
        result = []
        for entry in totals.values():
            del entry["_seen"]
            result.append(entry)
        return sorted(result, key=lambda r: r["words"], reverse=True)

    # ------------------------------------------------------------------ #
    #  Personal goals
    # ------------------------------------------------------------------ #
    def get_active_goal(self, participant_id: str) -> dict | None:
        for goal in self.doc["goals"].get(participant_id, []):
            if goal.get("active"):
                return goal
        return None

    def set_goal(self, participant_id: str, display_name: str, target: int,
                 started_date: str) -> dict:
        """Start a new active goal, deactivating any earlier ones."""
        goals = self.doc["goals"].setdefault(participant_id, [])
        for goal in goals:
            goal["active"] = False
        goal = {
            "name": display_name,
            "target": target,
            "current": 0,
            "active": True,
            "started_date": started_date,
        }
        goals.append(goal)
        self.flush()
        return goal

    def apply_goal_delta(self, participant_id: str, delta: int,
                         today: str | None = None) -> dict | None:
        """Add words to the active goal. Deactivates it once current reaches target.

        Returns the goal (possibly now inactive) or None when there is no active goal.
        """
        goal = self.get_active_goal(participant_id)
        if goal is None:
            return None
        goal["current"] += delta
        if goal["current"] >= goal["target"]:
            goal["active"] = False
            goal["completed_date"] = today
        self.flush()
        return goal

    # ------------------------------------------------------------------ #
    #  Sprint snapshots
    # ------------------------------------------------------------------ #
    def save_sprint_snapshot(self, snapshot: dict) -> None:
        self.doc["sprints"][snapshot["room_id"]] = snapshot
        self.flush()

    def delete_sprint_snapshot(self, room_id: str) -> None:
        if self.doc["sprints"].pop(room_id, None) is not None:
            self.flush()

    def list_sprint_snapshots(self) -> list[dict]:
        return list(self.doc["sprints"].values())

    # ------------------------------------------------------------------ #
    #  Blacklist
    # ------------------------------------------------------------------ #
    def is_blacklisted(self, participant_id: str) -> bool:
        return participant_id in self.doc["blacklist"]

    def blacklist_add(self, participant_id: str) -> bool:
        if participant_id in self.doc["blacklist"]:
            return False
        self.doc["blacklist"].append(participant_id)
        self.flush()
        return True

    def blacklist_remove(self, participant_id: str) -> bool:
        if participant_id not in self.doc["blacklist"]:
            return False
        self.doc["blacklist"].remove(participant_id)
        self.flush()
        return True

    # ------------------------------------------------------------------ #
    #  Scheduled sprints
    # ------------------------------------------------------------------ #
    def add_scheduled(self, room_id: str, start_at: datetime, duration: int,
                      created_by: str) -> dict:
        row = {
            "id": uuid.uuid4().hex[:12],
            "room_id": room_id,
            "start_at": to_iso(start_at),
            "duration": duration,
            "created_by": created_by,
        }
        self.doc["scheduled"].append(row)
        self.flush()
        return row

    def due_scheduled(self, now: datetime) -> list[dict]:
        """Scheduled rows whose start time has arrived, earliest first."""
        due = [row for row in self.doc["scheduled"] if from_iso(row["start_at"]) <= now]
        return sorted(due, key=lambda row: row["start_at"])

    def list_scheduled(self, room_id: str) -> list[dict]:
        rows = [row for row in self.doc["scheduled"] if row["room_id"] == room_id]
        return sorted(rows, key=lambda row: row["start_at"])

    def delete_scheduled(self, row_id: str) -> bool:
        before = len(self.doc["scheduled"])
        self.doc["scheduled"] = [row for row in self.doc["scheduled"] if row["id"] != row_id]
        if len(self.doc["scheduled"]) == before:
            return False
        self.flush()
        return True

    def delete_scheduled_for_room(self, room_id: str) -> int:
        before = len(self.doc["scheduled"])
        self.doc["scheduled"] = [row for row in self.doc["scheduled"] if row["room_id"] != room_id]
        removed = before - len(self.doc["scheduled"])
        if removed:
            self.flush()
        return removed

    # ------------------------------------------------------------------ #
    #  Display names and known participants / rooms
    # ------------------------------------------------------------------ #
    def name_override(self, participant_id: str) -> str | None:
        return self.doc["names"].get(participant_id)

    def set_name_override(self, participant_id: str, name: str) -> None:
        self.doc["names"][participant_id] = name
        self.flush()

    def rename_participant(self, participant_id: str, name: str) -> int:
        """Set the override and rewrite the name on every stored row. Returns rows touched."""
        self.doc["names"][participant_id] = name
        touched = 0
        for days in self.doc["daily_stats"].values():
            for rows in days.values():
                if participant_id in rows:
                    rows[participant_id]["name"] = name
                    touched += 1
        for goal in self.doc["goals"].get(participant_id, []):
            goal["name"] = name
        known = self.doc["participants"].get(participant_id)
        if known:
            known["name"] = name
        self.flush()
        return touched

    def remember_participant(self, participant_id: str, name: str, username: str,
                             room_id: str) -> None:
        """Record who has been seen where. Only writes when something changed."""
        known = self.doc["participants"].get(participant_id)
        if (known and known["name"] == name and known.get("username", "") == username
                and room_id in known["rooms"]):
            return
        if not known:
            known = self.doc["participants"][participant_id] = {"name": name, "rooms": []}
        known["name"] = name
        known["username"] = username
        if room_id not in known["rooms"]:
            known["rooms"].append(room_id)
        self.flush()

    def participant_name(self, participant_id: str) -> str | None:
        custom = self.name_override(participant_id)
        if custom:
            return custom
        return self.doc["participants"].get(participant_id, {}).get("name")

    def remember_room(self, room_id: str, title: str) -> None:
        if self.doc["rooms"].get(room_id, {}).get("title") == title:
            return
        self.doc["rooms"][room_id] = {"title": title}
        self.flush()

    def forget_room(self, room_id: str) -> None:
        if self.doc["rooms"].pop(room_id, None) is not None:
            self.flush()

    def known_rooms(self) -> list[str]:
        return list(self.doc["rooms"].keys())

    def find_participant(self, query: str, room_id: str | None = None) -> str | None:
        """Look up a participant by id, @username or display name (case-insensitive).

        When `room_id` is given, name matches are limited to participants seen there.
        """
        query = query.strip()
        if not query:
            return None
        if query in self.doc["participants"]:
            return query

        needle = query.lower()
        by_username = needle.lstrip("@")
        name_match = None
        for pid, known in self.doc["participants"].items():
            if room_id and room_id not in known.get("rooms", []):
                continue
            if known.get("username") and known["username"].lower() == by_username:
                return pid
            if name_match is None and known.get("name", "").lower() == needle:
                name_match = pid
        return name_match
