"""Text for everything the bot posts: sprint results, windowed leaderboards, goals."""

from datetime import datetime, timedelta

import helpers
from helpers import rank_icon, words_str

_HELP_TEXT = (
    "✍️ Sprint Bot\n"
    "\n"
    "Sprints:\n"
    "{p}sprint <minutes> - Start a sprint (default {default} min, max {max})\n"
    "{p}time - Time left in the current sprint\n"
    "{p}wc <n> - Set your word count\n"
    "{p}wc add <n> - Add to your word count (also: {p}wc + <n>)\n"
    "{p}finish - End the sprint and post results\n"
    "{p}cancel - Cancel the sprint, nothing is saved\n"
    "{p}schedule <minutes> in <delay> - Start a sprint later\n"
    "{p}unschedule - Drop all scheduled sprints here\n"
    "\n"
    "Stats:\n"
    "{p}daily / {p}weekly / {p}monthly - Leaderboards for 1 / 7 / 30 days\n"
    "{p}log <n> - Log words written outside a sprint\n"
    "{p}goal set <n> - Set a personal word goal\n"
    "{p}goal check - Show your goal progress\n"
    "{p}myname <name> - Change the name I show for you\n"
    "{p}help - Show this message"
)

_OWNER_HELP_TEXT = (
    "\n\nOwner:\n"
    "{p}broadcast <text> - Post to every known group\n"
    "{p}ban <who> / {p}unban <who> - Ignore or restore a participant\n"
    "{p}setword <who> <n> - Correct today's words (also: {p}correct)\n"
    "{p}setname <who> <name> - Rename a participant everywhere\n"
    "{p}leave - Make me leave this group"
)


def help_text(prefix: str, owner: bool = False) -> str:
    text = _HELP_TEXT
    if owner:
        text += _OWNER_HELP_TEXT
    return text.format(p=prefix, default=helpers.DEFAULT_SPRINT_MINUTES,
                       max=helpers.MAX_SPRINT_MINUTES)


# ------------------------------------------------------------------ #
#  Sprint lifecycle
# ------------------------------------------------------------------ #
def sprint_started(duration: int) -> str:
    return f"🚀 SPRINT STARTED!\n\n⏱️ {duration} minutes on the clock.\n🏁 Go write!"


def times_up(prefix: str = "/") -> str:
    return (
        "🛑 TIME'S UP!\n\n"
        f"Reply with {prefix}wc <number> to log your words.\n"
        f"Type {prefix}finish to see the leaderboard."
    )


def time_left(remaining: timedelta, prefix: str = "/") -> str:
    if remaining.total_seconds() <= 0:
        return f"🛑 Time's up! Log with {prefix}wc <number>, then {prefix}finish."
    return f"⏳ Time remaining: {helpers.fmt_remaining(remaining)}"


def word_ack(ack) -> str:
    """Reply for a word count submitted after the sprint's time is up."""
    if ack.mode == "add":
        return f"➕ Added {ack.amount:,}. {ack.display_name} total: {ack.total:,}"
    return f"✅ {ack.display_name}: {ack.total:,} words logged."


def no_entries() -> str:
    return "❌ Sprint ended. No words logged."


def cancelled() -> str:
    return "🚫 Sprint cancelled."


RESULTS_HEADER = "🏆 SPRINT RESULTS 🏆"


def results_body_start() -> int:
    """Index in sprint_results() text where the ranked lines begin."""
    return len(RESULTS_HEADER) + 2


def sprint_results(standings: list[dict], completed_goals: list[dict] | None = None,
                   prefix: str = "/") -> str:
    """Ranked leaderboard for a finished sprint.

    `standings` must already be sorted; each item has name, words and rate.
    """
    lines = [RESULTS_HEADER, ""]
    for i, s in enumerate(standings):
        lines.append(f"{rank_icon(i)} {s['name']}: {s['words']:,} ({s['rate']} wpm)")
    lines.append("")
    lines.append("Stats saved to the daily leaderboard! ✅")

    for done in completed_goals or []:
        lines.append("")
        lines.append(goal_complete(done["name"], done["target"]))

    lines.append("")
    lines.append(f"Great job everyone! Type {prefix}sprint to go again.")
    return "\n".join(lines)


# ------------------------------------------------------------------ #
#  Scheduling
# ------------------------------------------------------------------ #
def scheduled(duration: int, start_at: datetime, tz) -> str:
    local = start_at.astimezone(tz)
    return f"📅 {duration}-minute sprint scheduled for {local.strftime('%H:%M')} ({local.tzname()})."


def scheduled_skipped(duration: int) -> str:
    return f"⏭️ Scheduled {duration}-minute sprint skipped: a sprint is already running."


def unscheduled(count: int) -> str:
    if count == 0:
        return "No scheduled sprints here."
    plural = "sprint" if count == 1 else "sprints"
    return f"🗑️ Removed {count} scheduled {plural}."


# ------------------------------------------------------------------ #
#  Windowed leaderboards
# ------------------------------------------------------------------ #
_WINDOW_TITLES = {"daily": "DAILY", "weekly": "WEEKLY", "monthly": "MONTHLY"}


def window_leaderboard(window: str, rows: list[dict], since: str, today: str) -> str:
    if not rows:
        if window == "daily":
            return "📅 No stats recorded today."
        return f"📅 No stats recorded since {since}."

    period = today if window == "daily" else f"{since} → {today}"
    lines = [f"📅 {_WINDOW_TITLES[window]} LEADERBOARD ({period})", ""]
    for i, row in enumerate(rows):
        lines.append(f"{i + 1}. {row['name']}: {words_str(row['words'])}")
    total = sum(row["words"] for row in rows)
    lines.append("")
    lines.append(f"Total: {words_str(total)} from {len(rows)} writer{'s' if len(rows) != 1 else ''}")
    return "\n".join(lines)


# ------------------------------------------------------------------ #
#  Goals
# ------------------------------------------------------------------ #
def progress_bar(current: int, target: int, width: int | None = None) -> str:
    width = width or helpers.GOAL_BAR_WIDTH
    if target <= 0:
        return "▓" * width + " 100%"
    done = min(current, target)
    filled = done * width // target
    return "▓" * filled + "░" * (width - filled) + f" {done * 100 // target}%"


def goal_set(target: int) -> str:
    return f"🎯 New goal: {words_str(target)}. Every sprint and log counts toward it!"


def goal_progress(name: str, goal: dict | None, prefix: str = "/") -> str:
    if goal is None:
        return f"{name}, you have no active goal. Set one with {prefix}goal set <n>."
    left = max(goal["target"] - goal["current"], 0)
    return (
        f"🎯 {name}'s goal (since {goal['started_date']}):\n"
        f"{progress_bar(goal['current'], goal['target'])}\n"
        f"{goal['current']:,} / {goal['target']:,} words, {left:,} to go"
    )


def goal_complete(name: str, target: int) -> str:
    return f"🎉 {name} reached their goal of {words_str(target)}!"


def words_logged(name: str, words: int, today_total: int) -> str:
    return f"📝 Logged {words:,} for {name}. Today: {words_str(today_total)}."
