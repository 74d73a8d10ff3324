"""
ChatService: what the HTTP layer calls.

Shape checks, admin gating and side effects around the repository
(typing cleanup, stored file removal, handing messages to the bot).
"""
from __future__ import annotations
import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional, Union

from nexachat.bot.commands import CommandInterpreter
from nexachat.core.bus import EventBus
from nexachat.core.presence import TypingStore
from nexachat.db.errors import (
    InvalidInput,
    MessageNotFound,
    PermissionDenied,
    RoomNotFound,
    UserNotFound,
)
from nexachat.db.models import (
    PERMANENT_BAN,
    Message,
    MessageType,
    MessageView,
    PollData,
    Room,
    TypingIndicator,
    User,
    UserStatus,
)
from nexachat.db.repository import DEFAULT_MESSAGE_WINDOW, Repository
from .files import FileStore

log = logging.getLogger(__name__)

MESSAGE_CREATED = "message_created"
USERNAME_RE = re.compile(r"\S(.{0,30}\S)?")
STATUSES = {s.value for s in UserStatus}

BanDuration = Union[None, str, int]

TEXT_FIELDS = ("file_name", "file_path", "file_group_id", "reply_to_id")
INT_FIELDS = ("file_size", "group_index")


class ChatService:
    def __init__(self, repo: Repository, typing: TypingStore,
                 files: Optional[FileStore] = None,
                 bus: Optional[EventBus] = None,
                 interpreter: Optional[CommandInterpreter] = None,
                 max_content_length: int = 1000,
                 message_window: int = DEFAULT_MESSAGE_WINDOW):
        self.repo = repo
        self.typing = typing
        self.files = files
        self.bus = bus
        self.interpreter = interpreter
        self.max_content_length = max_content_length
        self.message_window = message_window
        if bus is not None and interpreter is not None:
            bus.on(MESSAGE_CREATED, self._answer_command)

    # === users ===
    def register_user(self, username: str, profile_image: Optional[str] = None,
                      status: Optional[str] = None) -> User:
        username = self._check_username(username)
        return self.repo.create_user(username, profile_image=profile_image,
                                     status=self._check_status(status or UserStatus.ONLINE.value))

    def get_user(self, user_id: str) -> User:
        user = self.repo.get_user(user_id)
        if user is None:
            raise UserNotFound(f"user {user_id} not found")
        return user

    def set_status(self, user_id: str, status: str) -> User:
        user = self.repo.update_user_status(user_id, self._check_status(status))
        if user is None:
            raise UserNotFound(f"user {user_id} not found")
        return user

    def update_profile(self, user_id: str, username: str, profile_image: Optional[str] = None) -> User:
        self._refuse_bot(user_id, "renamed")
        user = self.repo.update_user_profile(user_id, self._check_username(username), profile_image)
        if user is None:
            raise UserNotFound(f"user {user_id} not found")
        return user

    def bootstrap_admin(self, user_id: str) -> User:
        """Make the first admin. Refused once any admin exists."""
        self.get_user(user_id)
        user = self.repo.bootstrap_admin(user_id)
        if user is None:
            raise PermissionDenied("an admin already exists")
        log.info("[service] bootstrap admin: %s", user_id)
        return user

    def grant_admin(self, admin_id: str, user_id: str, is_admin: bool = True) -> User:
        self._require_admin(admin_id)
        user = self.repo.set_user_admin(user_id, is_admin)
        if user is None:
            raise UserNotFound(f"user {user_id} not found")
        return user

    def ban_user(self, admin_id: str, user_id: str, duration: BanDuration) -> User:
        """duration: minutes, "permanent", or None to lift the ban."""
        self._require_admin(admin_id)
        if admin_id == user_id:
            raise InvalidInput("admins cannot ban themselves")
        if duration is None or duration == "unban":
            until = None
        elif duration == "permanent":
            until = PERMANENT_BAN
        else:
            try:
                minutes = int(duration)
            except (TypeError, ValueError):
                raise InvalidInput(f"invalid ban duration {duration!r}") from None
            if minutes <= 0:
                raise InvalidInput("ban duration must be positive")
            until = self.repo.clock() + timedelta(minutes=minutes)
        user = self.repo.set_user_ban(user_id, until)
        if user is None:
            raise UserNotFound(f"user {user_id} not found")
        log.info("[service] ban %s until %s", user_id, until)
        return user

    def delete_account(self, user_id: str) -> None:
        self._refuse_bot(user_id, "deleted")
        if not self.repo.delete_user(user_id):
            raise UserNotFound(f"user {user_id} not found")
        log.info("[service] account %s deleted", user_id)

    # === rooms ===
    def get_room(self, room_id: str) -> Room:
        room = self.repo.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"room {room_id} not found")
        return room

    def create_room(self, admin_id: str, name: str, description: Optional[str] = None) -> Room:
        self._require_admin(admin_id)
        name = (name or "").strip()
        if not (1 <= len(name) <= 64):
            raise InvalidInput("room name must be 1-64 characters")
        return self.repo.create_room(name, description)

    def delete_room(self, admin_id: str, room_id: str) -> None:
        self._require_admin(admin_id)
        if not self.repo.delete_room(room_id):
            raise RoomNotFound(f"room {room_id} not found")

    def open_dm(self, user_id: str, other_id: str) -> Room:
        return self.repo.get_or_create_dm_room(user_id, other_id)

    def list_dms(self, user_id: str) -> List[Room]:
        self.get_user(user_id)
        return self.repo.list_dm_rooms(user_id)

    def add_to_dm(self, room_id: str, user_id: str) -> Room:
        return self.repo.add_dm_participant(room_id, user_id)

    def leave_dm(self, room_id: str, user_id: str) -> Room:
        return self.repo.remove_dm_participant(room_id, user_id)

    # === messages ===
    def post_message(self, room_id: str, user_id: str, content: Optional[str] = None,
                     message_type: str = MessageType.TEXT.value, **extras) -> MessageView:
        author = self.get_user(user_id)
        if author.is_banned(self.repo.clock()):
            raise PermissionDenied("banned users cannot post")
        content = self._check_content(content)
        if content is None and message_type == MessageType.TEXT.value:
            raise InvalidInput("text messages need content")
        if not isinstance(message_type, str):
            raise InvalidInput("messageType must be a string")
        poll = self._check_poll(extras.pop("poll", None))
        self._check_extras(extras)
        msg = self.repo.create_message(room_id, user_id, content, message_type, poll=poll, **extras)
        self.typing.clear(user_id, room_id)
        if self.bus is not None and author.username != self.repo.bot_username:
            self.bus.post(MESSAGE_CREATED, message=msg, username=author.username)
        return MessageView(message=msg, user=author)

    def messages(self, room_id: str, limit: Optional[int] = None) -> List[MessageView]:
        limit = self.message_window if limit is None else int(limit)
        if limit < 1:
            raise InvalidInput("limit must be >= 1")
        return self.repo.get_messages_by_room(room_id, limit)

    def _message(self, message_id: str) -> Message:
        msg = self.repo.get_message(message_id)
        if msg is None:
            raise MessageNotFound(f"message {message_id} not found")
        return msg

    def edit_message(self, message_id: str, user_id: str, content: str) -> Message:
        msg = self._message(message_id)
        if msg.user_id != user_id:
            raise PermissionDenied("only the author can edit a message")
        content = self._check_content(content)
        if content is None:
            raise InvalidInput("content is empty")
        return self.repo.edit_message(message_id, content)

    def delete_message(self, message_id: str, user_id: str) -> Message:
        msg = self._message(message_id)
        if msg.user_id != user_id:
            self._require_admin(user_id)
        removed = self.repo.delete_message(message_id)
        if self.files is not None:
            for path in removed.stored_paths():
                # other messages may point at the same upload
                if self.repo.count_messages_referencing(path) == 0:
                    self.files.delete(path)
        return removed

    def vote(self, message_id: str, user_id: str, option_index: int) -> Message:
        try:
            option_index = int(option_index)
        except (TypeError, ValueError):
            raise InvalidInput("optionIndex must be an integer") from None
        return self.repo.vote_poll(message_id, user_id, option_index)

    def react(self, message_id: str, user_id: str, emoji: str) -> bool:
        if not emoji or len(emoji) > 16:
            raise InvalidInput("emoji must be 1-16 characters")
        return self.repo.toggle_reaction(message_id, user_id, emoji)

    # === typing ===
    def set_typing(self, user_id: str, room_id: str, typing: bool = True) -> None:
        if not typing:
            self.typing.clear(user_id, room_id)
            return
        user = self.get_user(user_id)
        self.get_room(room_id)
        self.typing.set(user_id, room_id, user.username)

    def typing_in(self, room_id: str) -> List[TypingIndicator]:
        return self.typing.list(room_id)

    # === bot ===
    def _answer_command(self, payload: dict) -> None:
        msg: Message = payload["message"]
        reply = self.interpreter.handle(msg.content, context=f"{payload.get('username')}: {msg.content}")
        if reply is None:
            return
        bot = self.repo.get_bot_user()
        if bot is None:
            log.warning("[service] bot account missing, command dropped")
            return
        self.repo.create_message(msg.room_id, bot.id, reply, MessageType.TEXT.value, reply_to_id=msg.id)

    # === helpers ===
    def _require_admin(self, user_id: str) -> User:
        user = self.repo.get_user(user_id)
        if user is None or not user.is_admin:
            raise PermissionDenied("admin only")
        return user

    def _refuse_bot(self, user_id: str, action: str) -> None:
        bot = self.repo.get_bot_user()
        if bot is not None and bot.id == user_id:
            raise PermissionDenied(f"the bot account cannot be {action}")

    def _check_username(self, username: str) -> str:
        if username is not None and not isinstance(username, str):
            raise InvalidInput("username must be a string")
        username = (username or "").strip()
        if not USERNAME_RE.fullmatch(username):
            raise InvalidInput("username must be 1-32 characters")
        return username

    def _check_status(self, status: str) -> str:
        if status not in STATUSES:
            raise InvalidInput(f"invalid status '{status}'")
        return status

    def _check_content(self, content: Optional[str]) -> Optional[str]:
        if content is None:
            return None
        if not isinstance(content, str):
            raise InvalidInput("content must be a string")
        if len(content) > self.max_content_length:
            raise InvalidInput(f"content exceeds {self.max_content_length} characters")
        return content if content.strip() else None

    def _check_poll(self, poll) -> Optional[PollData]:
        if poll is None or isinstance(poll, PollData):
            return poll
        if not isinstance(poll, dict):
            raise InvalidInput("poll must be an object")
        question, options = poll.get("question"), poll.get("options")
        if not isinstance(question, str):
            raise InvalidInput("poll question must be a string")
        if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
            raise InvalidInput("poll options must be a list of strings")
        return PollData(question=question, options=list(options))

    def _check_extras(self, extras: dict) -> None:
        for key in TEXT_FIELDS:
            if extras.get(key) is not None and not isinstance(extras[key], str):
                raise InvalidInput(f"{key} must be a string")
        for key in INT_FIELDS:
            value = extras.get(key)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise InvalidInput(f"{key} must be a non-negative integer")
        attachments = extras.get("attachments")
        if attachments is None:
            return
        if not isinstance(attachments, list) or not all(isinstance(a, dict) for a in attachments):
            raise InvalidInput("attachments must be a list of objects")
        for item in attachments:
            if item.get("path") is not None and not isinstance(item["path"], str):
                raise InvalidInput("attachment path must be a string")

    def stats(self) -> dict:
        stats = self.repo.stats()
        stats["generated_at"] = datetime.now().isoformat()
        return stats
