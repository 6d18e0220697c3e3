"""Tests for reports.py text building."""

from datetime import datetime, timezone, timedelta
from zoneinfo import ZoneInfo

import reports
from sprints import Ack


def test_sprint_results_markers_and_goal_lines():
    standings = [
        {"name": "Alice", "words": 1200, "rate": 80},
        {"name": "Bob", "words": 900, "rate": 60},
        {"name": "Cara", "words": 300, "rate": 20},
        {"name": "Dev", "words": 15, "rate": 1},
    ]
    text = reports.sprint_results(standings, [{"name": "Bob", "target": 5000}], prefix="!")
    assert "🥇 Alice: 1,200 (80 wpm)" in text
    assert "🥈 Bob: 900 (60 wpm)" in text
    assert "🥉 Cara: 300 (20 wpm)" in text
    assert "🎖️ Dev: 15 (1 wpm)" in text
    assert "🎉 Bob reached their goal of 5,000 words!" in text
    assert "!sprint" in text


def test_window_leaderboard():
    rows = [{"name": "Alice", "words": 1500}, {"name": "Bob", "words": 1}]
    text = reports.window_leaderboard("weekly", rows, "2026-02-23", "2026-03-01")
    assert text.startswith("📅 WEEKLY LEADERBOARD (2026-02-23 → 2026-03-01)")
    assert "1. Alice: 1,500 words" in text
    assert "2. Bob: 1 word" in text
    assert "Total: 1,501 words from 2 writers" in text


def test_window_leaderboard_empty():
    assert reports.window_leaderboard("daily", [], "2026-03-01", "2026-03-01") == \
        "📅 No stats recorded today."
    assert "since 2026-02-23" in reports.window_leaderboard("weekly", [], "2026-02-23", "2026-03-01")


def test_progress_bar():
    assert reports.progress_bar(0, 1000, width=10) == "░░░░░░░░░░ 0%"
    assert reports.progress_bar(600, 1000, width=10) == "▓▓▓▓▓▓░░░░ 60%"
    assert reports.progress_bar(1500, 1000, width=4) == "▓▓▓▓ 100%"


def test_goal_progress():
    goal = {"target": 1000, "current": 250, "started_date": "2026-03-01"}
    text = reports.goal_progress("Alice", goal)
    assert "since 2026-03-01" in text
    assert "250 / 1,000 words, 750 to go" in text
    assert "no active goal" in reports.goal_progress("Alice", None, prefix="!")


def test_time_left():
    assert reports.time_left(timedelta(minutes=3, seconds=7)) == "⏳ Time remaining: 3m 7s"
    assert "Time's up" in reports.time_left(timedelta(seconds=-1))


def test_word_ack():
    add = Ack("p1", "Alice", "add", 200, 700, True)
    assert reports.word_ack(add) == "➕ Added 200. Alice total: 700"
    set_ = Ack("p1", "Alice", "set", 700, 700, True)
    assert reports.word_ack(set_) == "✅ Alice: 700 words logged."


def test_scheduled_uses_reporting_timezone():
    start = datetime(2026, 7, 1, 18, 30, tzinfo=timezone.utc)
    text = reports.scheduled(20, start, ZoneInfo("Europe/Paris"))
    assert "20:30" in text


def test_unscheduled():
    assert reports.unscheduled(0) == "No scheduled sprints here."
    assert reports.unscheduled(1) == "🗑️ Removed 1 scheduled sprint."
    assert reports.unscheduled(3) == "🗑️ Removed 3 scheduled sprints."


def test_help_text_owner_section():
    assert "!sprint <minutes>" in reports.help_text("!")
    assert "broadcast" not in reports.help_text("/")
    assert "/broadcast <text>" in reports.help_text("/", owner=True)
