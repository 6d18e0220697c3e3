"""Shared utilities, constants, and config loading."""

import json
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# ------------------------------------------------------------------ #
#  Paths
# ------------------------------------------------------------------ #
CONFIG_PATH = Path(__file__).parent.parent / "config.json"
STATE_PATH = Path(__file__).parent.parent / "data" / "sprint_state.json"

# ------------------------------------------------------------------ #
#  Tunable settings (defaults, overridden by config.json settings block)
# ------------------------------------------------------------------ #
DEFAULT_SPRINT_MINUTES = 15
MIN_SPRINT_MINUTES = 1
MAX_SPRINT_MINUTES = 180
MAX_SCHEDULE_DELAY_MINUTES = 1440
SCHEDULE_SWEEP_SECONDS = 60
POLL_TIMEOUT_SECONDS = 20
STORAGE_TIMEOUT_SECONDS = 10
MAX_NAME_LENGTH = 40
GOAL_BAR_WIDTH = 10

# Hard bounds on sprint length; config may narrow them but never widen them
SPRINT_MINUTES_FLOOR = 1
SPRINT_MINUTES_CEILING = 180

_SETTING_KEYS = {
    "default_sprint_minutes", "min_sprint_minutes", "max_sprint_minutes",
    "max_schedule_delay_minutes", "schedule_sweep_seconds", "poll_timeout_seconds",
    "storage_timeout_seconds", "max_name_length", "goal_bar_width",
}

WINDOW_DAYS = {"daily": 1, "weekly": 7, "monthly": 30}


# ------------------------------------------------------------------ #
#  Config loading
# ------------------------------------------------------------------ #
def load_config() -> dict:
    with open(CONFIG_PATH) as f:
        return json.load(f)


def load_settings(config: dict):
    """Load tunable settings from config, applying defaults for any missing keys."""
    global DEFAULT_SPRINT_MINUTES, MIN_SPRINT_MINUTES, MAX_SPRINT_MINUTES
    global MAX_SCHEDULE_DELAY_MINUTES, SCHEDULE_SWEEP_SECONDS, POLL_TIMEOUT_SECONDS
    global STORAGE_TIMEOUT_SECONDS, MAX_NAME_LENGTH, GOAL_BAR_WIDTH

    s = config.get("settings", {})
    DEFAULT_SPRINT_MINUTES = s.get("default_sprint_minutes", DEFAULT_SPRINT_MINUTES)
    MIN_SPRINT_MINUTES = s.get("min_sprint_minutes", MIN_SPRINT_MINUTES)
    MAX_SPRINT_MINUTES = s.get("max_sprint_minutes", MAX_SPRINT_MINUTES)
    MAX_SCHEDULE_DELAY_MINUTES = s.get("max_schedule_delay_minutes", MAX_SCHEDULE_DELAY_MINUTES)
    SCHEDULE_SWEEP_SECONDS = s.get("schedule_sweep_seconds", SCHEDULE_SWEEP_SECONDS)
    POLL_TIMEOUT_SECONDS = s.get("poll_timeout_seconds", POLL_TIMEOUT_SECONDS)
    STORAGE_TIMEOUT_SECONDS = s.get("storage_timeout_seconds", STORAGE_TIMEOUT_SECONDS)
    MAX_NAME_LENGTH = s.get("max_name_length", MAX_NAME_LENGTH)
    GOAL_BAR_WIDTH = s.get("goal_bar_width", GOAL_BAR_WIDTH)


def validate_config(config: dict) -> list[str]:
    """Check config for problems. Returns 'ERROR: ...' / 'WARNING: ...' strings."""
    issues = []

    owners = config.get("owner_ids", [])
    if not isinstance(owners, list):
        issues.append("ERROR: owner_ids must be a list")
    elif not owners:
        issues.append("WARNING: owner_ids is empty, admin commands are disabled")

    tz_name = config.get("timezone", "UTC")
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        issues.append(f"ERROR: unknown timezone '{tz_name}'")

    prefix = config.get("command_prefix", "/")
    if not isinstance(prefix, str) or len(prefix) != 1 or prefix.isalnum():
        issues.append(f"ERROR: command_prefix must be a single symbol, got {prefix!r}")

    settings = config.get("settings", {})
    for key, value in settings.items():
        if key not in _SETTING_KEYS:
            issues.append(f"WARNING: unknown setting '{key}'")
        elif not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            issues.append(f"ERROR: setting '{key}' must be a positive integer")

    lo = settings.get("min_sprint_minutes", MIN_SPRINT_MINUTES)
    hi = settings.get("max_sprint_minutes", MAX_SPRINT_MINUTES)
    if isinstance(lo, int) and isinstance(hi, int) and lo > hi:
        issues.append("ERROR: min_sprint_minutes is greater than max_sprint_minutes")
    if isinstance(lo, int) and lo < SPRINT_MINUTES_FLOOR:
        issues.append(f"ERROR: min_sprint_minutes must be at least {SPRINT_MINUTES_FLOOR}")
    if isinstance(hi, int) and hi > SPRINT_MINUTES_CEILING:
        issues.append(f"ERROR: max_sprint_minutes must be at most {SPRINT_MINUTES_CEILING}")

    return issues


def owner_id_set(config: dict) -> set:
    """Return owner participant IDs as a set of strings."""
    return set(str(uid) for uid in config.get("owner_ids", []))


def reporting_tz(config: dict) -> ZoneInfo:
    return ZoneInfo(config.get("timezone", "UTC"))


# ------------------------------------------------------------------ #
#  Time math
# ------------------------------------------------------------------ #
def local_date(now: datetime, tz: ZoneInfo) -> str:
    """Calendar day (YYYY-MM-DD) of `now` in the reporting timezone."""
    return fmt_date(now.astimezone(tz))


def window_start(today: str, days: int) -> str:
    """First calendar day of a window of `days` days ending at `today` (inclusive)."""
    day = datetime.strptime(today, "%Y-%m-%d")
    return fmt_date(day - timedelta(days=days - 1))


def seconds_until(now: datetime, then: datetime) -> float:
    return (then - now).total_seconds()


# ------------------------------------------------------------------ #
#  Formatting helpers
# ------------------------------------------------------------------ #
RANK_ICONS = ["🥇", "🥈", "🥉"]
OTHER_RANK_ICON = "🎖️"


def rank_icon(index: int) -> str:
    """Return medal emoji for top 3, or a shared marker for the rest."""
    return RANK_ICONS[index] if index < 3 else OTHER_RANK_ICON


def fmt_date(dt: datetime) -> str:
    """Format a datetime as YYYY-MM-DD."""
    return dt.strftime("%Y-%m-%d")


def fmt_remaining(td: timedelta) -> str:
    """Format a remaining duration as 'Xm Ys' (never negative)."""
    total = max(int(td.total_seconds()), 0)
    return f"{total // 60}m {total % 60}s"


def display_name(first_name: str, username: str = "", last_name: str = "") -> str:
    """Format a participant name as 'First Last', falling back to '@username'."""
    full = f"{first_name or ''} {last_name or ''}".strip()
    if full:
        return full
    if username:
        return f"@{username}"
    return ""


def words_str(n: int) -> str:
    """Return '1 word' or 'N words' with thousands separators."""
    return f"{n:,} word" if n == 1 else f"{n:,} words"


def parse_int(token: str | None) -> int | None:
    """Parse a signed integer token, returning None for anything else."""
    if token is None:
        return None
    token = token.strip()
    if token.startswith(("-", "+")):
        digits = token[1:]
    else:
        digits = token
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(token)


def to_iso(dt: datetime) -> str:
    return dt.isoformat()


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)
