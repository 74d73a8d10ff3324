"""
In-memory backend: plain dicts behind one re-entrant lock.

Returned objects are copies, so callers never mutate stored state outside the lock.
"""
from __future__ import annotations
import copy
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .errors import (
    DuplicateDirectRoom,
    DuplicateRoomName,
    DuplicateUsername,
    InvalidState,
    MessageNotFound,
    RoomNotFound,
    UnknownRoomReference,
    UnknownUserReference,
    UserNotFound,
)
from .models import (
    MAX_DM_PARTICIPANTS,
    MIN_DM_PARTICIPANTS,
    Message,
    MessageType,
    MessageView,
    PollData,
    Reaction,
    Room,
    User,
    UserStatus,
)
from .repository import (
    DEFAULT_MESSAGE_WINDOW,
    Repository,
    build_views,
    check_participants,
    check_poll,
    dm_key,
    record_vote,
)


def _new_id() -> str:
    return str(uuid.uuid4())


class MemoryRepository(Repository):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._rooms: Dict[str, Room] = {}
        self._messages: Dict[str, Message] = {}
        self._reactions: Dict[str, Reaction] = {}
        self._dm_index: Dict[str, str] = {}  # dm_key -> room id
        self._key = f"memory:{uuid.uuid4().hex}"
        self._init_bot()

    def storage_key(self) -> str:
        return self._key

    # === users ===
    def _username_taken(self, username: str, except_id: Optional[str] = None) -> bool:
        return any(u.username == username and u.id != except_id for u in self._users.values())

    def create_user(self, username: str, profile_image: Optional[str] = None,
                    status: str = UserStatus.ONLINE.value) -> User:
        with self._lock:
            if self._username_taken(username):
                raise DuplicateUsername(f"username '{username}' is already taken")
            user = User(
                id=_new_id(),
                username=username,
                profile_image=profile_image,
                status=status or UserStatus.ONLINE.value,
                is_admin=False,
                last_seen=self.clock(),
            )
            self._users[user.id] = user
            return copy.copy(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return copy.copy(user)
            return None

    def list_users(self) -> List[User]:
        with self._lock:
            return [copy.copy(u) for u in self._users.values()]

    def update_user_status(self, user_id: str, status: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.status = status
            user.last_seen = self.clock()
            return copy.copy(user)

    def update_user_profile(self, user_id: str, username: str,
                            profile_image: Optional[str] = None) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            if self._username_taken(username, except_id=user_id):
                raise DuplicateUsername(f"username '{username}' is already taken")
            user.username = username
            if profile_image is not None:
                user.profile_image = profile_image
            return copy.copy(user)

    def set_user_ban(self, user_id: str, banned_until: Optional[datetime]) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.banned_until = banned_until
            return copy.copy(user)

    def set_user_admin(self, user_id: str, is_admin: bool) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.is_admin = bool(is_admin)
            return copy.copy(user)

    def bootstrap_admin(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None or any(u.is_admin for u in self._users.values()):
                return None
            user.is_admin = True
            return copy.copy(user)

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            if user_id not in self._users:
                return False
            for room in [r for r in self._rooms.values() if r.is_dm and user_id in r.participants]:
                remaining = [p for p in room.participants if p != user_id]
                if len(remaining) < MIN_DM_PARTICIPANTS:
                    self._drop_room(room.id)
                    continue
                try:
                    self._rekey(room, remaining)
                except DuplicateDirectRoom:
                    # the survivors already share another DM
                    self._drop_room(room.id)
            for msg in [m for m in self._messages.values() if m.user_id == user_id]:
                self._drop_message(msg.id)
            for reaction in [r for r in self._reactions.values() if r.user_id == user_id]:
                del self._reactions[reaction.id]
            del self._users[user_id]
            return True

    # === rooms ===
    def create_room(self, name: str, description: Optional[str] = None, is_dm: bool = False,
                    participants: Optional[Sequence[str]] = None) -> Room:
        with self._lock:
            members: List[str] = []
            if is_dm:
                members = check_participants(list(participants or []))
                for uid in members:
                    if uid not in self._users:
                        raise UserNotFound(f"user {uid} not found")
                key = dm_key(members)
                if key in self._dm_index:
                    raise DuplicateDirectRoom("a DM room with these participants already exists")
            elif self._find_public_room(name) is not None:
                raise DuplicateRoomName(f"room '{name}' already exists")

            room = Room(id=_new_id(), name=name, description=description,
                        message_count=0, is_dm=bool(is_dm), participants=members)
            self._rooms[room.id] = room
            if is_dm:
                self._dm_index[dm_key(members)] = room.id
            return copy.deepcopy(room)

    def _find_public_room(self, name: str) -> Optional[Room]:
        for room in self._rooms.values():
            if not room.is_dm and room.name == name:
                return room
        return None

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._lock:
            room = self._rooms.get(room_id)
            return copy.deepcopy(room) if room else None

    def get_room_by_name(self, name: str) -> Optional[Room]:
        with self._lock:
            room = self._find_public_room(name)
            return copy.deepcopy(room) if room else None

    def list_rooms(self) -> List[Room]:
        with self._lock:
            counts: Dict[str, int] = {}
            for msg in self._messages.values():
                counts[msg.room_id] = counts.get(msg.room_id, 0) + 1
            out = []
            for room in self._rooms.values():
                if room.is_dm:
                    continue
                listed = copy.deepcopy(room)
                listed.message_count = counts.get(room.id, 0)
                out.append(listed)
            return out

    def increment_room_message_count(self, room_id: str) -> None:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is not None:
                room.message_count += 1

    def _decrement_room_message_count(self, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None and room.message_count > 0:
            room.message_count -= 1

    def delete_room(self, room_id: str) -> bool:
        with self._lock:
            if room_id not in self._rooms:
                return False
            self._drop_room(room_id)
            return True

    def _drop_room(self, room_id: str) -> None:
        for msg in [m for m in self._messages.values() if m.room_id == room_id]:
            self._drop_message(msg.id)
        room = self._rooms.pop(room_id)
        if room.is_dm:
            self._dm_index.pop(dm_key(room.participants), None)

    # === direct messages ===
    def find_dm_room(self, user1_id: str, user2_id: str) -> Optional[Room]:
        with self._lock:
            room_id = self._dm_index.get(dm_key([user1_id, user2_id]))
            return copy.deepcopy(self._rooms[room_id]) if room_id else None

    def list_dm_rooms(self, user_id: str) -> List[Room]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._rooms.values()
                    if r.is_dm and user_id in r.participants]

    def _dm_room_or_raise(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(f"room {room_id} not found")
        if not room.is_dm:
            raise InvalidState(f"room {room_id} is not a DM room")
        return room

    def _rekey(self, room: Room, members: List[str]) -> None:
        old_key, new_key = dm_key(room.participants), dm_key(members)
        if self._dm_index.get(new_key, room.id) != room.id:
            raise DuplicateDirectRoom("another DM room already has these participants")
        self._dm_index.pop(old_key, None)
        self._dm_index[new_key] = room.id
        room.participants = members

    def add_dm_participant(self, room_id: str, user_id: str) -> Room:
        with self._lock:
            room = self._dm_room_or_raise(room_id)
            if user_id not in self._users:
                raise UserNotFound(f"user {user_id} not found")
            if user_id in room.participants:
                return copy.deepcopy(room)
            if len(room.participants) >= MAX_DM_PARTICIPANTS:
                raise InvalidState(f"DM rooms hold at most {MAX_DM_PARTICIPANTS} participants")
            self._rekey(room, room.participants + [user_id])
            return copy.deepcopy(room)

    def remove_dm_participant(self, room_id: str, user_id: str) -> Room:
        with self._lock:
            room = self._dm_room_or_raise(room_id)
            if user_id not in room.participants:
                raise UserNotFound(f"user {user_id} is not in room {room_id}")
            if len(room.participants) <= MIN_DM_PARTICIPANTS:
                raise InvalidState(f"DM rooms need at least {MIN_DM_PARTICIPANTS} participants")
            self._rekey(room, [p for p in room.participants if p != user_id])
            return copy.deepcopy(room)

    # === messages ===
    def create_message(self, room_id: str, user_id: str, content: Optional[str] = None,
                       message_type: str = MessageType.TEXT.value, *,
                       file_name: Optional[str] = None,
                       file_path: Optional[str] = None,
                       file_size: Optional[int] = None,
                       file_group_id: Optional[str] = None,
                       group_index: Optional[int] = None,
                       reply_to_id: Optional[str] = None,
                       poll: Optional[PollData] = None,
                       attachments: Optional[List[dict]] = None) -> Message:
        if message_type == MessageType.POLL.value:
            check_poll(poll)
        with self._lock:
            if room_id not in self._rooms:
                raise UnknownRoomReference(f"room {room_id} not found")
            if user_id not in self._users:
                raise UnknownUserReference(f"user {user_id} not found")
            msg = Message(
                id=_new_id(),
                room_id=room_id,
                user_id=user_id,
                content=content,
                message_type=message_type or MessageType.TEXT.value,
                file_name=file_name,
                file_path=file_path,
                file_size=file_size,
                file_group_id=file_group_id,
                group_index=group_index,
                reply_to_id=reply_to_id,
                created_at=self.clock(),
                poll=copy.deepcopy(poll),
                attachments=list(attachments or []),
            )
            self._messages[msg.id] = msg
            self.increment_room_message_count(room_id)
            return copy.deepcopy(msg)

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            msg = self._messages.get(message_id)
            return copy.deepcopy(msg) if msg else None

    def get_messages_by_room(self, room_id: str,
                             limit: int = DEFAULT_MESSAGE_WINDOW) -> List[MessageView]:
        with self._lock:
            if room_id not in self._rooms:
                raise RoomNotFound(f"room {room_id} not found")
            window = sorted((m for m in self._messages.values() if m.room_id == room_id),
                            key=lambda m: m.created_at)
            window = window[-limit:] if limit > 0 else []
            ids = {m.id for m in window}
            reactions: Dict[str, List[Reaction]] = {}
            for reaction in sorted(self._reactions.values(), key=lambda r: r.created_at):
                if reaction.message_id in ids:
                    reactions.setdefault(reaction.message_id, []).append(copy.copy(reaction))
            users = {uid: copy.copy(u) for uid, u in self._users.items()}
            return build_views([copy.deepcopy(m) for m in window], users, reactions)

    def _message_or_raise(self, message_id: str) -> Message:
        msg = self._messages.get(message_id)
        if msg is None:
            raise MessageNotFound(f"message {message_id} not found")
        return msg

    def edit_message(self, message_id: str, content: str) -> Message:
        with self._lock:
            msg = self._message_or_raise(message_id)
            msg.content = content
            msg.edited_at = self.clock()
            return copy.deepcopy(msg)

    def delete_message(self, message_id: str) -> Message:
        with self._lock:
            self._message_or_raise(message_id)
            return self._drop_message(message_id)

    def _drop_message(self, message_id: str) -> Message:
        msg = self._messages.pop(message_id)
        for reaction in [r for r in self._reactions.values() if r.message_id == message_id]:
            del self._reactions[reaction.id]
        self._decrement_room_message_count(msg.room_id)
        return msg

    def vote_poll(self, message_id: str, user_id: str, option_index: int) -> Message:
        with self._lock:
            msg = self._message_or_raise(message_id)
            if user_id not in self._users:
                raise UserNotFound(f"user {user_id} not found")
            record_vote(msg, user_id, option_index, self.clock())
            return copy.deepcopy(msg)

    def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> bool:
        with self._lock:
            self._message_or_raise(message_id)
            if user_id not in self._users:
                raise UserNotFound(f"user {user_id} not found")
            for reaction in self._reactions.values():
                if (reaction.message_id, reaction.user_id, reaction.emoji) == (message_id, user_id, emoji):
                    del self._reactions[reaction.id]
                    return False
            reaction = Reaction(id=_new_id(), message_id=message_id, user_id=user_id,
                                emoji=emoji, created_at=self.clock())
            self._reactions[reaction.id] = reaction
            return True

    def delete_messages_before(self, cutoff: datetime) -> List[Message]:
        with self._lock:
            expired = [m.id for m in self._messages.values() if m.created_at < cutoff]
            return [self._drop_message(mid) for mid in expired]

    def count_messages_referencing(self, path: str) -> int:
        with self._lock:
            return sum(1 for m in self._messages.values() if path in m.stored_paths())

    def stats(self) -> dict:
        with self._lock:
            return {
                "total_users": len(self._users),
                "total_rooms": sum(1 for r in self._rooms.values() if not r.is_dm),
                "dm_rooms": sum(1 for r in self._rooms.values() if r.is_dm),
                "total_messages": len(self._messages),
                "total_reactions": len(self._reactions),
            }
