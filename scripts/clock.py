"""One-shot wake-up alarms driven by the main loop's tick.

Nothing here runs on its own thread: the bot loop calls `fire_due(now)`
between update batches, so alarm callbacks are serialized with command
handling for every room.
"""

from datetime import datetime, timezone
from typing import Callable


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Alarms:
    """Keyed one-shot alarms. Re-arming a key replaces its pending alarm."""

    def __init__(self):
        self._pending: dict[str, tuple[datetime, Callable[[datetime], None]]] = {}

    def arm(self, key: str, due_at: datetime, callback: Callable[[datetime], None]) -> None:
        self._pending[key] = (due_at, callback)

    def cancel(self, key: str) -> bool:
        return self._pending.pop(key, None) is not None

    def is_armed(self, key: str) -> bool:
        return key in self._pending

    def due_at(self, key: str) -> datetime | None:
        entry = self._pending.get(key)
        return entry[0] if entry else None

    def fire_due(self, now: datetime) -> int:
        """Run and drop every alarm whose due time has passed. Returns how many fired."""
        due = [key for key, (at, _) in self._pending.items() if at <= now]
        fired = 0
        for key in due:
            at, callback = self._pending.pop(key)
            try:
                callback(now)
            except Exception as e:
                print(f"Error in alarm {key}: {e}")
            fired += 1
        return fired

    def __len__(self) -> int:
        return len(self._pending)
