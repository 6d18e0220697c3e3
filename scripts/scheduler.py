"""Periodic work driven by the bot loop: sprint expiry alarms and scheduled sprints."""

from datetime import datetime, timedelta

import helpers
import reports
from clock import Alarms, utcnow
from sprints import AlreadyRunning, InvalidDuration
from state import PersistenceError


def sweep_scheduled(book, storage, now: datetime | None = None) -> int:
    """Start every due scheduled sprint. Each row is consumed exactly once.

    A row whose room already has a sprint is announced as skipped, never queued
    again. Returns the number of rows consumed.
    """
    now = now or utcnow()
    consumed = 0
    for row in storage.due_scheduled(now):
        room_id = row["room_id"]
        try:
            book.start(room_id, row["duration"], row["created_by"], now=now)
        except AlreadyRunning:
            book.notify(room_id, reports.scheduled_skipped(row["duration"]))
            print(f"Scheduled sprint {row['id']} skipped in {room_id}: already running")
        except InvalidDuration:
            print(f"Scheduled sprint {row['id']} in {room_id} has a bad duration, dropping")

        try:
            storage.delete_scheduled(row["id"])
        except PersistenceError as e:
            print(f"Warning: could not delete scheduled sprint {row['id']}: {e}")
        consumed += 1
    return consumed


class Scheduler:
    """Called once per loop iteration; fires due alarms and sweeps the schedule queue."""

    def __init__(self, book, storage, alarms: Alarms):
        self.book = book
        self.storage = storage
        self.alarms = alarms
        self.last_sweep: datetime | None = None

    def sweep_due(self, now: datetime) -> bool:
        if self.last_sweep is None:
            return True
        return now - self.last_sweep >= timedelta(seconds=helpers.SCHEDULE_SWEEP_SECONDS)

    def tick(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self.alarms.fire_due(now)
        if self.sweep_due(now):
            self.last_sweep = now
            try:
                sweep_scheduled(self.book, self.storage, now=now)
            except Exception as e:
                print(f"Error in scheduled sprint sweep: {e}")
