"""Shared test fixtures: an in-memory state backend and a fake Telegram transport."""

import json
from zoneinfo import ZoneInfo

import pytest

import state as state_store
from clock import Alarms
from sprints import SprintBook
from storage import Storage


class MemoryState:
    """State backend that keeps the last saved document in memory."""

    def __init__(self, doc: dict | None = None, fail: bool = False):
        self.doc = doc
        self.fail = fail
        self.saved = None
        self.saves = 0

    def load(self) -> dict:
        return self.doc if self.doc is not None else state_store.fresh_state()

    def save(self, doc: dict) -> None:
        if self.fail:
            raise state_store.PersistenceTimeout("simulated timeout")
        self.saves += 1
        self.saved = json.loads(json.dumps(doc))


class FakeTelegram:
    """Stands in for the telegram module; records everything the bot sends."""

    def __init__(self):
        self.sent = []
        self.reactions = []
        self.left = []
        self.members = {}

    def send_message(self, chat_id, text, mentions=None, reply_to=None, mention_from=0):
        self.sent.append({"chat_id": str(chat_id), "text": text, "mentions": mentions,
                          "reply_to": reply_to, "mention_from": mention_from})
        return True

    def react(self, chat_id, message_id, emoji):
        self.reactions.append({"chat_id": str(chat_id), "message_id": message_id, "emoji": emoji})
        return True

    def get_chat_member(self, chat_id, user_id):
        return self.members.get(str(user_id))

    def leave_chat(self, chat_id):
        self.left.append(str(chat_id))
        return True

    def get_updates(self, offset, timeout=20):
        return []

    def texts(self) -> list[str]:
        return [m["text"] for m in self.sent]


class Notifications(list):
    """Callable list collecting (room_id, text, mentions) from a SprintBook."""

    def __call__(self, room_id, text, mentions=None):
        self.append((room_id, text, mentions))
        return True

    def texts(self) -> list[str]:
        return [text for _, text, _ in self]


@pytest.fixture
def backend():
    return MemoryState()


@pytest.fixture
def storage(backend):
    return Storage(backend)


@pytest.fixture
def notes():
    return Notifications()


@pytest.fixture
def alarms():
    return Alarms()


@pytest.fixture
def book(storage, alarms, notes):
    return SprintBook(storage, alarms, notes, ZoneInfo("UTC"))


@pytest.fixture
def fake_tg(monkeypatch):
    import bot
    fake = FakeTelegram()
    monkeypatch.setattr(bot, "tg", fake)
    return fake


@pytest.fixture
def failing_backend():
    return MemoryState(fail=True)
