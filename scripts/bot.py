"""
Writing Sprint Bot

Long-running Telegram bot that runs timed group writing sprints: start a
timer, log word counts, get a ranked leaderboard at the end. Daily, weekly
and monthly stats and personal goals are persisted between restarts.

State is persisted in a GitHub Gist or a local JSON file.
Modules: telegram.py (API), state.py + storage.py (persistence),
sprints.py (sprint state machine), scheduler.py (alarms and scheduled
sprints), identity.py (who sent it), reports.py (text), helpers.py (utilities).
"""

import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import helpers
import reports
import telegram as tg
import state as state_store

from clock import Alarms, utcnow
from identity import Participant, default_resolver, raw_sender_id
from scheduler import Scheduler
from sprints import (
    ADD, SET, SprintBook, SprintError, InvalidAmount, InvalidDuration, NotFound,
    Unauthorized, check_duration, credit_words,
)
from state import PersistenceError
from storage import Storage

GROUP_CHAT_TYPES = ("group", "supergroup")
WRITING_REACTION = "✍"


# ------------------------------------------------------------------ #
#  Parsing
# ------------------------------------------------------------------ #
def parse_command(text: str, prefix: str) -> tuple[str, list[str], str] | None:
    """Split '/wc add 200' into ('wc', ['add', '200'], 'add 200').

    Returns None when the text is not a command. '/cmd@BotName' is accepted.
    """
    text = (text or "").strip()
    if not text.startswith(prefix):
        return None
    parts = text[len(prefix):].split(maxsplit=1)
    if not parts:
        return None
    token = parts[0].lower().split("@", 1)[0]
    rest = parts[1].strip() if len(parts) > 1 else ""
    return token, rest.split(), rest


@dataclass
class Context:
    msg: dict
    room_id: str
    message_id: int | None
    participant: Participant
    is_owner: bool
    args: list[str] = field(default_factory=list)
    rest: str = ""
    now: datetime | None = None

    @property
    def pid(self) -> str:
        return self.participant.participant_id

    @property
    def name(self) -> str:
        return self.participant.display_name


def _notify(room_id: str, text: str, mentions: list | None = None) -> bool:
    return tg.send_message(room_id, text, mentions=mentions)


# ------------------------------------------------------------------ #
#  Dispatcher
# ------------------------------------------------------------------ #
class Dispatcher:
    def __init__(self, config: dict, book: SprintBook, storage: Storage, resolver=None):
        self.book = book
        self.storage = storage
        self.prefix = config.get("command_prefix", "/")
        self.owners = helpers.owner_id_set(config)
        self.tz = helpers.reporting_tz(config)
        self.resolver = resolver or default_resolver(
            lambda chat_id, user_id: tg.get_chat_member(chat_id, user_id),
            override=storage.name_override,
        )

        self.commands = {
            "help": self._cmd_help,
            "commands": self._cmd_help,
            "sprint": self._cmd_sprint,
            "wc": self._cmd_wc,
            "time": self._cmd_time,
            "finish": self._cmd_finish,
            "cancel": self._cmd_cancel,
            "schedule": self._cmd_schedule,
            "unschedule": self._cmd_unschedule,
            "daily": self._cmd_window,
            "weekly": self._cmd_window,
            "monthly": self._cmd_window,
            "goal": self._cmd_goal,
            "log": self._cmd_log,
            "myname": self._cmd_myname,
        }
        self.owner_commands = {
            "broadcast": self._cmd_broadcast,
            "ban": self._cmd_ban,
            "unban": self._cmd_unban,
            "leave": self._cmd_leave,
            "setword": self._cmd_setword,
            "correct": self._cmd_setword,
            "setname": self._cmd_setname,
        }

    # ---- replies ----
    def _reply(self, ctx: Context, text: str) -> None:
        tg.send_message(ctx.room_id, text, reply_to=ctx.message_id)

    def _today(self, ctx: Context) -> str:
        return helpers.local_date(ctx.now, self.tz)

    # ------------------------------------------------------------------ #
    #  Entry points
    # ------------------------------------------------------------------ #
    def process_updates(self, updates: list, now: datetime | None = None) -> int:
        """Handle a batch of Telegram updates. Returns the next offset."""
        new_offset = self.storage.offset

        for update in updates:
            update_id = update["update_id"]
            new_offset = max(new_offset, update_id + 1)

            msg = update.get("message")
            if not msg:
                continue
            try:
                self.handle_message(msg, now=now)
            except Exception as e:
                print(f"Error handling update {update_id}: {e}")

        return new_offset

    def handle_message(self, msg: dict, now: datetime | None = None) -> None:
        now = now or utcnow()
        parsed = parse_command(msg.get("text", ""), self.prefix)
        if not parsed:
            return
        token, args, rest = parsed

        handler = self.commands.get(token) or self.owner_commands.get(token)
        if handler is None:
            return

        if (msg.get("from") or {}).get("is_bot", False):
            return

        chat = msg.get("chat", {})
        room_id = str(chat.get("id", ""))
        is_group = chat.get("type") in GROUP_CHAT_TYPES
        if not is_group and raw_sender_id(msg) not in self.owners:
            return

        participant = self.resolver.resolve(msg)
        if self.storage.is_blacklisted(participant.participant_id):
            return

        ctx = Context(
            msg=msg,
            room_id=room_id,
            message_id=msg.get("message_id"),
            participant=participant,
            is_owner=participant.participant_id in self.owners,
            args=args,
            rest=rest,
            now=now,
        )
        if is_group:
            self._remember(ctx, chat)

        try:
            if token in self.owner_commands and not ctx.is_owner:
                raise Unauthorized()
            handler(ctx, token)
        except Unauthorized:
            print(f"Ignored /{token} from non-owner {ctx.pid}")
        except SprintError as e:
            self._reply(ctx, e.reply)

    def _remember(self, ctx: Context, chat: dict) -> None:
        try:
            self.storage.remember_room(ctx.room_id, chat.get("title", ""))
            self.storage.remember_participant(
                ctx.pid, ctx.name, ctx.participant.username, ctx.room_id)
        except PersistenceError as e:
            print(f"Warning: could not record room/participant: {e}")

    # ------------------------------------------------------------------ #
    #  Sprint commands
    # ------------------------------------------------------------------ #
    def _cmd_help(self, ctx: Context, _token: str) -> None:
        self._reply(ctx, reports.help_text(self.prefix, owner=ctx.is_owner))

    def _cmd_sprint(self, ctx: Context, _token: str) -> None:
        if ctx.args:
            minutes = helpers.parse_int(ctx.args[0])
            if minutes is None:
                raise InvalidDuration()
        else:
            minutes = helpers.DEFAULT_SPRINT_MINUTES
        self.book.start(ctx.room_id, minutes, ctx.pid, now=ctx.now)

    def _cmd_wc(self, ctx: Context, _token: str) -> None:
        args = ctx.args
        mode = SET
        if args and args[0] in ("add", "+"):
            mode = ADD
            args = args[1:]
        elif args and args[0].startswith("+") and len(args[0]) > 1:
            mode = ADD
        amount = helpers.parse_int(args[0]) if args else None
        if amount is None:
            raise InvalidAmount(
                f"Usage: {self.prefix}wc <n> or {self.prefix}wc add <n>")

        ack = self.book.log_words(ctx.room_id, ctx.pid, ctx.name, amount, mode, now=ctx.now)
        if ack.expired:
            self._reply(ctx, reports.word_ack(ack))
        elif ctx.message_id:
            tg.react(ctx.room_id, ctx.message_id, WRITING_REACTION)

    def _cmd_time(self, ctx: Context, _token: str) -> None:
        remaining = self.book.remaining(ctx.room_id, now=ctx.now)
        self._reply(ctx, reports.time_left(remaining, self.prefix))

    def _cmd_finish(self, ctx: Context, _token: str) -> None:
        result = self.book.finish(ctx.room_id, date=self._today(ctx), now=ctx.now)
        tg.send_message(ctx.room_id, result.text, mentions=result.mentions,
                        mention_from=result.mention_from)

    def _cmd_cancel(self, ctx: Context, _token: str) -> None:
        if self.book.cancel(ctx.room_id):
            self._reply(ctx, reports.cancelled())

    def _cmd_schedule(self, ctx: Context, _token: str) -> None:
        usage = f"Usage: {self.prefix}schedule <minutes> in <delay minutes>"
        args = ctx.args
        if len(args) != 3 or args[1].lower() != "in":
            self._reply(ctx, usage)
            return
        minutes = helpers.parse_int(args[0])
        delay = helpers.parse_int(args[2])
        if minutes is None:
            raise InvalidDuration()
        check_duration(minutes)
        if delay is None or not 1 <= delay <= helpers.MAX_SCHEDULE_DELAY_MINUTES:
            raise InvalidDuration(
                f"⚠️ The delay must be between 1 and {helpers.MAX_SCHEDULE_DELAY_MINUTES} minutes.")

        start_at = ctx.now + timedelta(minutes=delay)
        try:
            self.storage.add_scheduled(ctx.room_id, start_at, minutes, ctx.pid)
        except PersistenceError as e:
            print(f"Warning: could not save scheduled sprint: {e}")
        self._reply(ctx, reports.scheduled(minutes, start_at, self.tz))
        print(f"Scheduled {minutes} min sprint in {ctx.room_id} at {start_at.isoformat()}")

    def _cmd_unschedule(self, ctx: Context, _token: str) -> None:
        try:
            removed = self.storage.delete_scheduled_for_room(ctx.room_id)
        except PersistenceError as e:
            print(f"Warning: could not save unschedule: {e}")
            removed = 0
        self._reply(ctx, reports.unscheduled(removed))

    # ------------------------------------------------------------------ #
    #  Stats and goals
    # ------------------------------------------------------------------ #
    def _cmd_window(self, ctx: Context, token: str) -> None:
        today = self._today(ctx)
        since = helpers.window_start(today, helpers.WINDOW_DAYS[token])
        if token == "daily":
            rows = self.storage.find_daily_stats(ctx.room_id, today)
        else:
            rows = self.storage.aggregate_window(ctx.room_id, since, today)
        tg.send_message(ctx.room_id, reports.window_leaderboard(token, rows, since, today))

    def _cmd_goal(self, ctx: Context, _token: str) -> None:
        sub = ctx.args[0].lower() if ctx.args else "check"
        if sub == "set":
            target = helpers.parse_int(ctx.args[1]) if len(ctx.args) > 1 else None
            if target is None or target <= 0:
                raise InvalidAmount(f"Usage: {self.prefix}goal set <words> (a positive number)")
            try:
                self.storage.set_goal(ctx.pid, ctx.name, target, self._today(ctx))
            except PersistenceError as e:
                print(f"Warning: could not save goal for {ctx.pid}: {e}")
            self._reply(ctx, reports.goal_set(target))
        elif sub == "check":
            goal = self.storage.get_active_goal(ctx.pid)
            self._reply(ctx, reports.goal_progress(ctx.name, goal, self.prefix))
        else:
            self._reply(ctx, f"Usage: {self.prefix}goal set <n> or {self.prefix}goal check")

    def _cmd_log(self, ctx: Context, _token: str) -> None:
        words = helpers.parse_int(ctx.args[0]) if ctx.args else None
        if words is None or words <= 0:
            raise InvalidAmount(f"Usage: {self.prefix}log <words> (a positive number)")

        today = self._today(ctx)
        done = credit_words(self.storage, ctx.pid, ctx.room_id, today, ctx.name, words, now=ctx.now)
        today_total = next(
            (row["words"] for row in self.storage.find_daily_stats(ctx.room_id, today)
             if row["participant_id"] == ctx.pid),
            words,
        )
        text = reports.words_logged(ctx.name, words, today_total)
        if done:
            text += "\n\n" + reports.goal_complete(done["name"], done["target"])
        self._reply(ctx, text)

    def _cmd_myname(self, ctx: Context, _token: str) -> None:
        name = " ".join(ctx.rest.split())[:helpers.MAX_NAME_LENGTH]
        if not name:
            self._reply(ctx, f"Usage: {self.prefix}myname <name>")
            return
        try:
            self.storage.set_name_override(ctx.pid, name)
            self.storage.remember_participant(ctx.pid, name, ctx.participant.username, ctx.room_id)
        except PersistenceError as e:
            print(f"Warning: could not save name for {ctx.pid}: {e}")
        self._reply(ctx, f"✅ Got it, I'll call you {name}.")

    # ------------------------------------------------------------------ #
    #  Owner commands
    # ------------------------------------------------------------------ #
    def _find_target(self, ctx: Context, query: str) -> str:
        """Participant id for a reply target, numeric id, @username or name."""
        if not query:
            replied = (ctx.msg.get("reply_to_message") or {}).get("from") or {}
            if replied.get("id") is not None:
                return str(replied["id"])
            raise NotFound(f"Reply to someone's message or name them, e.g. {self.prefix}ban @user")
        pid = self.storage.find_participant(query)
        if pid is None:
            raise NotFound(f"❓ I don't know anyone called {query}.")
        return pid

    def _target_name(self, pid: str) -> str:
        return self.storage.participant_name(pid) or pid

    def _cmd_broadcast(self, ctx: Context, _token: str) -> None:
        if not ctx.rest:
            self._reply(ctx, f"Usage: {self.prefix}broadcast <text>")
            return
        rooms = self.storage.known_rooms()
        sent = sum(1 for room_id in rooms if tg.send_message(room_id, f"📢 {ctx.rest}"))
        self._reply(ctx, f"Broadcast sent to {sent}/{len(rooms)} groups.")
        print(f"Broadcast by {ctx.pid} to {sent}/{len(rooms)} groups")

    def _cmd_ban(self, ctx: Context, _token: str) -> None:
        pid = self._find_target(ctx, ctx.rest)
        if pid in self.owners:
            self._reply(ctx, "Owners can't be banned.")
            return
        try:
            added = self.storage.blacklist_add(pid)
        except PersistenceError as e:
            print(f"Warning: could not save blacklist: {e}")
            added = True
        name = self._target_name(pid)
        self._reply(ctx, f"🚫 {name} is now ignored." if added else f"{name} is already ignored.")

    def _cmd_unban(self, ctx: Context, _token: str) -> None:
        pid = self._find_target(ctx, ctx.rest)
        try:
            removed = self.storage.blacklist_remove(pid)
        except PersistenceError as e:
            print(f"Warning: could not save blacklist: {e}")
            removed = True
        name = self._target_name(pid)
        self._reply(ctx, f"✅ {name} can use the bot again." if removed else f"{name} wasn't banned.")

    def _cmd_leave(self, ctx: Context, _token: str) -> None:
        self.book.cancel(ctx.room_id)
        try:
            self.storage.delete_scheduled_for_room(ctx.room_id)
            self.storage.forget_room(ctx.room_id)
        except PersistenceError as e:
            print(f"Warning: could not forget room {ctx.room_id}: {e}")
        tg.send_message(ctx.room_id, "👋 Bye! Happy writing.")
        tg.leave_chat(ctx.room_id)
        print(f"Left {ctx.room_id} at the request of {ctx.pid}")

    def _cmd_setword(self, ctx: Context, token: str) -> None:
        if not ctx.args:
            self._reply(ctx, f"Usage: {self.prefix}{token} <who> <n>")
            return
        words = helpers.parse_int(ctx.args[-1])
        if words is None or words < 0:
            raise InvalidAmount()
        pid = self._find_target(ctx, " ".join(ctx.args[:-1]))
        name = self._target_name(pid)
        today = self._today(ctx)
        try:
            self.storage.set_daily_words(pid, ctx.room_id, today, name, words, now=ctx.now)
        except PersistenceError as e:
            print(f"Warning: could not save correction for {pid}: {e}")
        self._reply(ctx, f"✏️ {name} now has {helpers.words_str(words)} for {today}.")

    def _cmd_setname(self, ctx: Context, token: str) -> None:
        replied = (ctx.msg.get("reply_to_message") or {}).get("from")
        if replied:
            pid, name = self._find_target(ctx, ""), ctx.rest
        elif len(ctx.args) >= 2:
            pid, name = self._find_target(ctx, ctx.args[0]), " ".join(ctx.args[1:])
        else:
            self._reply(ctx, f"Usage: {self.prefix}{token} <who> <name>")
            return
        name = " ".join(name.split())[:helpers.MAX_NAME_LENGTH]
        if not name:
            self._reply(ctx, f"Usage: {self.prefix}{token} <who> <name>")
            return
        try:
            touched = self.storage.rename_participant(pid, name)
        except PersistenceError as e:
            print(f"Warning: could not save rename for {pid}: {e}")
            touched = 0
        self._reply(ctx, f"✅ Renamed to {name} ({touched} stat rows updated).")


# ------------------------------------------------------------------ #
#  Main
# ------------------------------------------------------------------ #
def build(config: dict, storage: Storage) -> tuple[Dispatcher, Scheduler]:
    """Wire the sprint book, dispatcher and scheduler around one storage."""
    alarms = Alarms()
    book = SprintBook(storage, alarms, _notify, helpers.reporting_tz(config),
                      prefix=config.get("command_prefix", "/"))
    dispatcher = Dispatcher(config, book, storage)
    scheduler = Scheduler(book, storage, alarms)
    return dispatcher, scheduler


def run_once(dispatcher: Dispatcher, scheduler: Scheduler) -> None:
    """One loop iteration: poll updates, handle them, then fire due work."""
    storage = dispatcher.storage
    updates = tg.get_updates(storage.offset, timeout=helpers.POLL_TIMEOUT_SECONDS)
    if updates:
        offset = dispatcher.process_updates(updates)
        try:
            storage.set_offset(offset)
        except PersistenceError as e:
            print(f"Warning: could not save update offset: {e}")
    scheduler.tick()


def main() -> None:
    """Entry point: load config/state, restore sprints, then poll forever."""
    telegram_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    if not telegram_token:
        print("Error: TELEGRAM_BOT_TOKEN not set")
        sys.exit(1)

    tg.init(telegram_token)

    config = helpers.load_config()
    helpers.load_settings(config)

    issues = helpers.validate_config(config)
    for issue in issues:
        print(issue)
    if any(i.startswith("ERROR:") for i in issues):
        print("Fatal config errors found, aborting")
        sys.exit(1)

    backend = state_store.from_env(helpers.STATE_PATH, timeout=helpers.STORAGE_TIMEOUT_SECONDS)
    try:
        storage = Storage(backend)
    except PersistenceError as e:
        # Saving over state we failed to read would wipe it
        print(f"Error: could not load state: {e}")
        sys.exit(1)
    dispatcher, scheduler = build(config, storage)

    restored = dispatcher.book.restore()
    print(f"Loaded state. Offset: {storage.offset}")
    print(f"Restored {restored} sprints, {len(storage.doc['scheduled'])} scheduled, "
          f"{len(storage.known_rooms())} known groups")

    try:
        while True:
            try:
                run_once(dispatcher, scheduler)
            except Exception as e:
                print(f"Error in main loop: {e}")
                time.sleep(5)
    except KeyboardInterrupt:
        print("Shutting down")
    finally:
        dispatcher.book.teardown()


if __name__ == "__main__":
    main()
