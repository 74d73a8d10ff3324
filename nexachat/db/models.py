"""
Data models for users, rooms and messages
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum


class UserStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class MessageType(str, Enum):
    # Open set: storage accepts any tag, these are the ones the server knows.
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    VOICE = "voice"
    GIF = "gif"
    POLL = "poll"
    SYSTEM = "system"


PERMANENT_BAN = datetime(9999, 12, 31, 23, 59, 59)

MIN_DM_PARTICIPANTS = 2
MAX_DM_PARTICIPANTS = 4


@dataclass
class User:
    id: str
    username: str
    profile_image: Optional[str] = None
    status: str = UserStatus.ONLINE.value
    is_admin: bool = False
    last_seen: datetime = None
    banned_until: Optional[datetime] = None

    def __post_init__(self):
        if self.last_seen is None:
            self.last_seen = datetime.now()

    def is_banned(self, now: datetime) -> bool:
        return self.banned_until is not None and self.banned_until > now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "profileImage": self.profile_image,
            "status": self.status,
            "isAdmin": self.is_admin,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
            "bannedUntil": self.banned_until.isoformat() if self.banned_until else None,
        }


@dataclass
class Room:
    id: str
    name: str
    description: Optional[str] = None
    message_count: int = 0
    is_dm: bool = False
    participants: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "messageCount": self.message_count,
            "isDM": self.is_dm,
            "participants": list(self.participants) if self.is_dm else None,
        }


@dataclass
class PollVote:
    user_id: str
    option_index: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "optionIndex": self.option_index,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PollData:
    question: str
    options: List[str]
    votes: List[PollVote] = field(default_factory=list)

    def tally(self) -> List[int]:
        counts = [0] * len(self.options)
        for vote in self.votes:
            if 0 <= vote.option_index < len(counts):
                counts[vote.option_index] += 1
        return counts

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "options": list(self.options),
            "votes": [v.to_dict() for v in self.votes],
            "tally": self.tally(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PollData":
        votes = [
            PollVote(
                user_id=v["userId"],
                option_index=int(v["optionIndex"]),
                timestamp=datetime.fromisoformat(v["timestamp"]),
            )
            for v in data.get("votes", [])
        ]
        return cls(question=data["question"], options=list(data["options"]), votes=votes)


@dataclass
class Message:
    id: str
    room_id: str
    user_id: str
    content: Optional[str] = None
    message_type: str = MessageType.TEXT.value
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    file_group_id: Optional[str] = None
    group_index: Optional[int] = None
    reply_to_id: Optional[str] = None
    created_at: datetime = None
    edited_at: Optional[datetime] = None
    poll: Optional[PollData] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now()

    def stored_paths(self) -> List[str]:
        """File paths owned by this message (main file + attachments)."""
        paths = [self.file_path] if self.file_path else []
        for item in self.attachments:
            path = item.get("path") if isinstance(item, dict) else None
            if path:
                paths.append(path)
        return paths

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "userId": self.user_id,
            "content": self.content,
            "messageType": self.message_type,
            "fileName": self.file_name,
            "filePath": self.file_path,
            "fileSize": self.file_size,
            "fileGroupId": self.file_group_id,
            "groupIndex": self.group_index,
            "replyToId": self.reply_to_id,
            "createdAt": self.created_at.isoformat(),
            "editedAt": self.edited_at.isoformat() if self.edited_at else None,
            "poll": self.poll.to_dict() if self.poll else None,
            "attachments": list(self.attachments),
        }


@dataclass
class Reaction:
    id: str
    message_id: str
    user_id: str
    emoji: str
    created_at: datetime = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "messageId": self.message_id,
            "userId": self.user_id,
            "emoji": self.emoji,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class MessageView:
    """A message joined with its author, reactions and (optionally) the message it replies to.

    ``reply_to`` is best-effort: it is only filled when the target is inside the
    same fetched window. ``None`` does not mean the target was deleted.
    """
    message: Message
    user: User
    reply_to: Optional["MessageView"] = None
    reactions: List[Reaction] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.message.to_dict()
        data["user"] = self.user.to_dict()
        data["replyTo"] = self.reply_to.to_dict() if self.reply_to else None
        data["reactions"] = [r.to_dict() for r in self.reactions]
        return data


@dataclass
class TypingIndicator:
    user_id: str
    username: str
    room_id: str
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.username,
            "roomId": self.room_id,
            "timestamp": datetime.fromtimestamp(self.timestamp).isoformat(),
        }
