"""Telegram Bot API helpers."""

import json
import requests

TELEGRAM_API = ""
REQUEST_TIMEOUT = 10


def init(token: str) -> None:
    """Set the API base URL from bot token."""
    global TELEGRAM_API
    TELEGRAM_API = f"https://api.telegram.org/bot{token}"


def _post(method: str, payload: dict, label: str = "request") -> dict | bool | None:
    """POST to Telegram API, return parsed result on success or None on failure."""
    try:
        resp = requests.post(f"{TELEGRAM_API}/{method}", json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        print(f"Telegram {label} failed: {e}")
        return None
    if resp.status_code == 200:
        data = resp.json()
        if data.get("ok"):
            return data.get("result")
    print(f"Telegram {label} failed: {resp.text}")
    return None


def get_updates(offset: int, timeout: int = 20) -> list:
    """Long-poll for new messages from the Telegram Bot API."""
    try:
        resp = requests.get(
            f"{TELEGRAM_API}/getUpdates",
            params={
                "offset": offset,
                "limit": 100,
                "timeout": timeout,
                "allowed_updates": json.dumps(["message"]),
            },
            timeout=timeout + REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        print(f"Error fetching updates: {e}")
        return []

    if resp.status_code != 200:
        print(f"Error fetching updates: HTTP {resp.status_code}")
        return []

    data = resp.json()
    if not data.get("ok"):
        print(f"Telegram API error: {data}")
        return []

    return data.get("result", [])


def _utf16_len(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def mention_entities(text: str, mentions: list[tuple[str, str]], start: int = 0) -> list[dict]:
    """Build text_mention entities for each (user_id, name) found in text.

    Offsets are in UTF-16 code units, as the Bot API expects. Matching begins
    at index `start` (so a header can be skipped) and each name is matched
    after the previous match so repeated names map in order.
    """
    entities = []
    cursor = start
    for user_id, name in mentions:
        if not name or not str(user_id).lstrip("-").isdigit():
            continue
        idx = text.find(name, cursor)
        if idx < 0:
            continue
        entities.append({
            "type": "text_mention",
            "offset": _utf16_len(text[:idx]),
            "length": _utf16_len(name),
            "user": {"id": int(user_id), "is_bot": False, "first_name": name},
        })
        cursor = idx + len(name)
    return entities


def send_message(chat_id, text: str, mentions: list[tuple[str, str]] | None = None,
                 reply_to: int | None = None, mention_from: int = 0) -> bool:
    """Send a text message to a chat, optionally mentioning participants. Returns True on success."""
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_notification": False,
    }
    if mentions:
        entities = mention_entities(text, mentions, start=mention_from)
        if entities:
            payload["entities"] = entities
    if reply_to:
        payload["reply_parameters"] = {"message_id": reply_to, "allow_sending_without_reply": True}
    return _post("sendMessage", payload, "send_message") is not None


def react(chat_id, message_id: int, emoji: str) -> bool:
    """Set a single emoji reaction on a message."""
    return _post("setMessageReaction", {
        "chat_id": chat_id,
        "message_id": message_id,
        "reaction": [{"type": "emoji", "emoji": emoji}],
    }, "react") is not None


def get_chat_member(chat_id, user_id) -> dict | None:
    """Fetch a member's profile in a chat, or None."""
    return _post("getChatMember", {"chat_id": chat_id, "user_id": user_id}, "get_chat_member")


def leave_chat(chat_id) -> bool:
    return _post("leaveChat", {"chat_id": chat_id}, "leave_chat") is not None
