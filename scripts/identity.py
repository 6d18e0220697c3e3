"""Resolve a Telegram sender into a stable participant id and display name.

Resolution walks an ordered list of strategies; the first one that returns
a usable name wins. A custom name set with /myname always takes precedence.
"""

from typing import Callable, NamedTuple

import helpers


class Participant(NamedTuple):
    participant_id: str
    display_name: str
    username: str = ""


Strategy = Callable[[dict], "Participant | None"]


def raw_sender_id(msg: dict) -> str:
    """Transport-level sender id of a message ('' if there is none)."""
    sender = msg.get("from") or msg.get("sender_chat") or {}
    return str(sender.get("id", ""))


def profile_strategy(get_member: Callable[[str, str], dict | None]) -> Strategy:
    """Ask the transport for the sender's chat-member profile."""
    def resolve(msg: dict) -> Participant | None:
        pid = raw_sender_id(msg)
        chat_id = str(msg.get("chat", {}).get("id", ""))
        if not pid or not chat_id:
            return None
        member = get_member(chat_id, pid)
        if not member:
            return None
        user = member.get("user", {})
        name = helpers.display_name(
            user.get("first_name", ""), user.get("username", ""), user.get("last_name", ""))
        if not name:
            return None
        return Participant(pid, name, user.get("username", ""))
    return resolve


def event_hint_strategy(msg: dict) -> Participant | None:
    """Use the name fields carried on the inbound message itself."""
    pid = raw_sender_id(msg)
    sender = msg.get("from") or {}
    if not pid:
        return None
    name = helpers.display_name(
        sender.get("first_name", ""), sender.get("username", ""), sender.get("last_name", ""))
    if not name:
        name = (msg.get("sender_chat") or {}).get("title", "")
    if not name:
        return None
    return Participant(pid, name, sender.get("username", ""))


def raw_id_strategy(msg: dict) -> Participant | None:
    """Last resort: build a name out of the raw sender id."""
    pid = raw_sender_id(msg)
    digits = "".join(ch for ch in pid if ch.isdigit())
    return Participant(pid, f"User {digits or pid or '?'}")


class IdentityResolver:
    def __init__(self, strategies: list[Strategy],
                 override: Callable[[str], str | None] | None = None):
        self.strategies = strategies
        self.override = override

    def resolve(self, msg: dict) -> Participant:
        """Always returns some usable participant, whatever fails along the way."""
        found = None
        for strategy in self.strategies:
            try:
                found = strategy(msg)
            except Exception as e:
                print(f"Identity strategy {getattr(strategy, '__name__', strategy)} failed: {e}")
                found = None
            if found and found.display_name:
                break
        if not found:
            found = raw_id_strategy(msg)

        if self.override:
            custom = self.override(found.participant_id)
            if custom:
                found = found._replace(display_name=custom)
        return found


def default_resolver(get_member, override=None) -> IdentityResolver:
    return IdentityResolver(
        [profile_strategy(get_member), event_hint_strategy, raw_id_strategy],
        override=override,
    )
