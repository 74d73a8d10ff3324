"""
Storage contract shared by every backend.

Backends implement the abstract operations; the helpers here (presence
classification, DM resolution, default room seeding, view assembly) are written
once against that contract.
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from nexachat.bot.manager import DEFAULT_BOT_USERNAME, DEFAULT_BOT_PROFILE_IMAGE, ensure_bot_user
from nexachat.core.single_flight import SingleFlight, guard_for
from .errors import DuplicateDirectRoom, InvalidInput, InvalidState, UserNotFound
from .models import (
    MAX_DM_PARTICIPANTS,
    MIN_DM_PARTICIPANTS,
    Message,
    MessageView,
    PollData,
    PollVote,
    Reaction,
    Room,
    User,
    UserStatus,
)

log = logging.getLogger(__name__)

DEFAULT_MESSAGE_WINDOW = 50
OFFLINE_AFTER_SEC = 5 * 60


def dm_key(participants: Iterable[str]) -> str:
    """Canonical, order independent identity of a DM participant set."""
    return "|".join(sorted(set(participants)))


def check_participants(participants: Sequence[str]) -> List[str]:
    unique = list(dict.fromkeys(participants))
    if len(unique) != len(participants):
        raise InvalidInput("DM participants must be distinct")
    if not (MIN_DM_PARTICIPANTS <= len(unique) <= MAX_DM_PARTICIPANTS):
        raise InvalidState(
            f"DM rooms hold {MIN_DM_PARTICIPANTS}-{MAX_DM_PARTICIPANTS} participants, got {len(unique)}"
        )
    return unique


def check_poll(poll: Optional[PollData]) -> None:
    if poll is None:
        raise InvalidInput("poll messages need a question and options")
    if not poll.question.strip():
        raise InvalidInput("poll question is empty")
    if len(poll.options) < 2:
        raise InvalidInput("a poll needs at least two options")


def record_vote(message: Message, user_id: str, option_index: int, now: datetime) -> None:
    poll = message.poll
    if poll is None:
        raise InvalidState(f"message {message.id} is not a poll")
    if not (0 <= option_index < len(poll.options)):
        raise InvalidInput(f"option {option_index} out of range")
    if any(v.user_id == user_id for v in poll.votes):
        raise InvalidState("user already voted on this poll")
    poll.votes.append(PollVote(user_id=user_id, option_index=option_index, timestamp=now))


def build_views(messages: List[Message], users: Dict[str, User],
                reactions: Dict[str, List[Reaction]]) -> List[MessageView]:
    """Join messages with authors and reactions, resolving replies inside the same window only."""
    views: Dict[str, MessageView] = {}
    ordered: List[MessageView] = []
    for msg in messages:
        user = users.get(msg.user_id)
        if user is None:
            continue
        view = MessageView(message=msg, user=user, reactions=list(reactions.get(msg.id, [])))
        views[msg.id] = view
        ordered.append(view)
    for view in ordered:
        target_id = view.message.reply_to_id
        target = views.get(target_id) if target_id else None
        if target is not None:
            # one level deep: the embedded target carries no reply of its own
            view.reply_to = MessageView(message=target.message, user=target.user,
                                        reactions=list(target.reactions))
    return ordered


class Repository(ABC):
    """Users, rooms and messages. One concrete backend per process."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None,
                 bot_username: Optional[str] = DEFAULT_BOT_USERNAME,
                 bot_profile_image: Optional[str] = DEFAULT_BOT_PROFILE_IMAGE,
                 bot_guard: Optional[SingleFlight] = None,
                 offline_after_sec: float = OFFLINE_AFTER_SEC):
        self.clock = clock or datetime.now
        self.bot_username = bot_username
        self.bot_profile_image = bot_profile_image
        self.offline_after = timedelta(seconds=offline_after_sec)
        self._bot_guard = bot_guard

    @abstractmethod
    def storage_key(self) -> str:
        """Identifies the underlying datastore; repositories sharing one share the bot guard."""

    def _init_bot(self) -> None:
        if not self.bot_username:
            return
        guard = self._bot_guard or guard_for(self.storage_key())
        guard.run(lambda: ensure_bot_user(self, self.bot_username, self.bot_profile_image))

    def get_bot_user(self) -> Optional[User]:
        if not self.bot_username:
            return None
        return self.get_user_by_username(self.bot_username)

    # === users ===
    @abstractmethod
    def create_user(self, username: str, profile_image: Optional[str] = None,
                    status: str = UserStatus.ONLINE.value) -> User: ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def list_users(self) -> List[User]: ...

    @abstractmethod
    def update_user_status(self, user_id: str, status: str) -> Optional[User]: ...

    @abstractmethod
    def update_user_profile(self, user_id: str, username: str,
                            profile_image: Optional[str] = None) -> Optional[User]: ...

    @abstractmethod
    def set_user_ban(self, user_id: str, banned_until: Optional[datetime]) -> Optional[User]: ...

    @abstractmethod
    def set_user_admin(self, user_id: str, is_admin: bool) -> Optional[User]: ...

    @abstractmethod
    def bootstrap_admin(self, user_id: str) -> Optional[User]:
        """Make user_id the first admin; None if an admin already exists or the user is unknown."""

    @abstractmethod
    def delete_user(self, user_id: str) -> bool: ...

    def _online_candidates(self, now: datetime) -> List[User]:
        return [u for u in self.list_users()
                if u.status == UserStatus.ONLINE.value and not u.is_banned(now)]

    def _offline_candidates(self, now: datetime, cutoff: datetime) -> List[User]:
        return [u for u in self.list_users()
                if not u.is_banned(now)
                and (u.status == UserStatus.OFFLINE.value or u.last_seen < cutoff)]

    def get_online_users(self) -> List[User]:
        """Online, non-banned users. The bot account is always reported online."""
        users = self._online_candidates(self.clock())
        bot = self.get_bot_user()
        if bot is not None:
            if bot.status != UserStatus.ONLINE.value:
                bot = self.update_user_status(bot.id, UserStatus.ONLINE.value) or bot
                log.info("[repo] bot status restored to online")
            if all(u.id != bot.id for u in users):
                users.append(bot)
        return users

    def get_offline_users(self) -> List[User]:
        now = self.clock()
        users = self._offline_candidates(now, now - self.offline_after)
        bot = self.get_bot_user()
        if bot is not None:
            users = [u for u in users if u.id != bot.id]
        return users

    # === rooms ===
    @abstractmethod
    def create_room(self, name: str, description: Optional[str] = None, is_dm: bool = False,
                    participants: Optional[Sequence[str]] = None) -> Room: ...

    @abstractmethod
    def get_room(self, room_id: str) -> Optional[Room]: ...

    @abstractmethod
    def get_room_by_name(self, name: str) -> Optional[Room]: ...

    @abstractmethod
    def list_rooms(self) -> List[Room]: ...

    @abstractmethod
    def increment_room_message_count(self, room_id: str) -> None: ...

    @abstractmethod
    def delete_room(self, room_id: str) -> bool: ...

    def ensure_rooms(self, defaults: Dict[str, Optional[str]]) -> List[str]:
        """Create missing default rooms; returns the names that were created."""
        created = []
        for name, description in defaults.items():
            if self.get_room_by_name(name) is None:
                self.create_room(name, description)
                created.append(name)
        if created:
            log.info("[repo] default rooms created: %s", ", ".join(created))
        return created

    # === direct messages ===
    @abstractmethod
    def find_dm_room(self, user1_id: str, user2_id: str) -> Optional[Room]: ...

    @abstractmethod
    def list_dm_rooms(self, user_id: str) -> List[Room]: ...

    @abstractmethod
    def add_dm_participant(self, room_id: str, user_id: str) -> Room: ...

    @abstractmethod
    def remove_dm_participant(self, room_id: str, user_id: str) -> Room: ...

    def get_or_create_dm_room(self, user1_id: str, user2_id: str) -> Room:
        if user1_id == user2_id:
            raise InvalidState("cannot open a DM with yourself")
        user1 = self.get_user(user1_id)
        if user1 is None:
            raise UserNotFound(f"user {user1_id} not found")
        user2 = self.get_user(user2_id)
        if user2 is None:
            raise UserNotFound(f"user {user2_id} not found")

        room = self.find_dm_room(user1_id, user2_id)
        if room is not None:
            return room
        try:
            return self.create_room(f"{user1.username}, {user2.username}", is_dm=True,
                                    participants=[user1_id, user2_id])
        except DuplicateDirectRoom:
            # a concurrent caller created it first
            room = self.find_dm_room(user1_id, user2_id)
            if room is None:
                raise
            return room

    # === messages ===
    @abstractmethod
    def create_message(self, room_id: str, user_id: str, content: Optional[str] = None,
                       message_type: str = "text", *,
                       file_name: Optional[str] = None,
                       file_path: Optional[str] = None,
                       file_size: Optional[int] = None,
                       file_group_id: Optional[str] = None,
                       group_index: Optional[int] = None,
                       reply_to_id: Optional[str] = None,
                       poll: Optional[PollData] = None,
                       attachments: Optional[List[dict]] = None) -> Message: ...

    @abstractmethod
    def get_message(self, message_id: str) -> Optional[Message]: ...

    @abstractmethod
    def get_messages_by_room(self, room_id: str,
                             limit: int = DEFAULT_MESSAGE_WINDOW) -> List[MessageView]: ...

    @abstractmethod
    def edit_message(self, message_id: str, content: str) -> Message: ...

    @abstractmethod
    def delete_message(self, message_id: str) -> Message: ...

    @abstractmethod
    def vote_poll(self, message_id: str, user_id: str, option_index: int) -> Message: ...

    @abstractmethod
    def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> bool: ...

    @abstractmethod
    def delete_messages_before(self, cutoff: datetime) -> List[Message]: ...

    @abstractmethod
    def count_messages_referencing(self, path: str) -> int:
        """Number of stored messages whose file_path or attachments point at path."""

    @abstractmethod
    def stats(self) -> dict: ...


__all__ = [
    "Repository",
    "dm_key",
    "check_participants",
    "build_views",
    "check_poll",
    "record_vote",
    "DEFAULT_MESSAGE_WINDOW",
    "OFFLINE_AFTER_SEC",
]
