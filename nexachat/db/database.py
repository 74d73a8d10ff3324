"""
SQLite backend
"""
import json
import os
import sqlite3
import uuid
from contextlib import contextmanager
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

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        profile_image TEXT,
        status TEXT NOT NULL DEFAULT 'online',
        is_admin INTEGER NOT NULL DEFAULT 0,
        last_seen REAL NOT NULL,
        banned_until REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rooms (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        message_count INTEGER NOT NULL DEFAULT 0,
        is_dm INTEGER NOT NULL DEFAULT 0,
        dm_key TEXT UNIQUE,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS room_participants (
        room_id TEXT NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        PRIMARY KEY (room_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT UNIQUE NOT NULL,
        room_id TEXT NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        content TEXT,
        message_type TEXT NOT NULL DEFAULT 'text',
        file_name TEXT,
        file_path TEXT,
        file_size INTEGER,
        file_group_id TEXT,
        group_index INTEGER,
        reply_to_id TEXT,
        created_at REAL NOT NULL,
        edited_at REAL,
        poll TEXT,
        attachments TEXT NOT NULL DEFAULT '[]'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reactions (
        id TEXT PRIMARY KEY,
        message_id TEXT NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        emoji TEXT NOT NULL,
        created_at REAL NOT NULL,
        UNIQUE (message_id, user_id, emoji)
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_rooms_public_name ON rooms (name) WHERE is_dm = 0",
    "CREATE INDEX IF NOT EXISTS idx_participants_user ON room_participants (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_room_created ON messages (room_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_created ON messages (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_user ON messages (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_reactions_message ON reactions (message_id)",
    "CREATE INDEX IF NOT EXISTS idx_users_status ON users (status, last_seen)",
]

MESSAGE_COLUMNS = (
    "id, room_id, user_id, content, message_type, file_name, file_path, file_size, "
    "file_group_id, group_index, reply_to_id, created_at, edited_at, poll, attachments"
)


def _ts(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _dt(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value) if value is not None else None


class SqliteRepository(Repository):
    def __init__(self, db_path: str = "nexachat.db", **kwargs):
        super().__init__(**kwargs)
        self.db_path = db_path
        self._init_database()
        self._init_bot()

    def storage_key(self) -> str:
        return f"sqlite:{os.path.abspath(self.db_path)}"

    def _init_database(self):
        """Create tables and indexes"""
        with self._get_connection() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _get_connection(self):
        """Autocommit connection; use _transaction for multi-statement writes"""
        conn = sqlite3.connect(self.db_path, timeout=10.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self):
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # === row mappers ===
    def _row_to_user(self, row) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            profile_image=row["profile_image"],
            status=row["status"],
            is_admin=bool(row["is_admin"]),
            last_seen=_dt(row["last_seen"]),
            banned_until=_dt(row["banned_until"]),
        )

    def _row_to_room(self, conn, row, message_count: Optional[int] = None) -> Room:
        participants: List[str] = []
        if row["is_dm"]:
            participants = [
                r["user_id"] for r in conn.execute(
                    "SELECT user_id FROM room_participants WHERE room_id = ? ORDER BY position",
                    (row["id"],),
                )
            ]
        return Room(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            message_count=row["message_count"] if message_count is None else message_count,
            is_dm=bool(row["is_dm"]),
            participants=participants,
        )

    def _row_to_message(self, row) -> Message:
        return Message(
            id=row["id"],
            room_id=row["room_id"],
            user_id=row["user_id"],
            content=row["content"],
            message_type=row["message_type"],
            file_name=row["file_name"],
            file_path=row["file_path"],
            file_size=row["file_size"],
            file_group_id=row["file_group_id"],
            group_index=row["group_index"],
            reply_to_id=row["reply_to_id"],
            created_at=_dt(row["created_at"]),
            edited_at=_dt(row["edited_at"]),
            poll=PollData.from_dict(json.loads(row["poll"])) if row["poll"] else None,
            attachments=json.loads(row["attachments"] or "[]"),
        )

    def _row_to_reaction(self, row) -> Reaction:
        return Reaction(
            id=row["id"],
            message_id=row["message_id"],
            user_id=row["user_id"],
            emoji=row["emoji"],
            created_at=_dt(row["created_at"]),
        )

    # === users ===
    def create_user(self, username: str, profile_image: Optional[str] = None,
                    status: str = UserStatus.ONLINE.value) -> User:
        user = User(
            id=str(uuid.uuid4()),
            username=username,
            profile_image=profile_image,
            status=status or UserStatus.ONLINE.value,
            is_admin=False,
            last_seen=self.clock(),
        )
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO users (id, username, profile_image, status, is_admin, last_seen, banned_until)
                    VALUES (?, ?, ?, ?, 0, ?, NULL)
                """, (user.id, user.username, user.profile_image, user.status, _ts(user.last_seen)))
        except sqlite3.IntegrityError as e:
            raise DuplicateUsername(f"username '{username}' is already taken") from e
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
            return self._row_to_user(row) if row else None

    def list_users(self) -> List[User]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY rowid").fetchall()
            return [self._row_to_user(row) for row in rows]

    def _online_candidates(self, now):
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM users
                WHERE status = ? AND (banned_until IS NULL OR banned_until <= ?)
                ORDER BY rowid
            """, (UserStatus.ONLINE.value, _ts(now))).fetchall()
            return [self._row_to_user(row) for row in rows]

    def _offline_candidates(self, now, cutoff):
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM users
                WHERE (banned_until IS NULL OR banned_until <= ?)
                AND (status = ? OR last_seen < ?)
                ORDER BY rowid
            """, (_ts(now), UserStatus.OFFLINE.value, _ts(cutoff))).fetchall()
            return [self._row_to_user(row) for row in rows]

    def _update_user(self, user_id: str, assignments: str, params: tuple) -> Optional[User]:
        with self._transaction() as conn:
            cursor = conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", params + (user_id,))
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row)

    def update_user_status(self, user_id: str, status: str) -> Optional[User]:
        return self._update_user(user_id, "status = ?, last_seen = ?", (status, _ts(self.clock())))

    def update_user_profile(self, user_id: str, username: str,
                            profile_image: Optional[str] = None) -> Optional[User]:
        try:
            if profile_image is None:
                return self._update_user(user_id, "username = ?", (username,))
            return self._update_user(user_id, "username = ?, profile_image = ?", (username, profile_image))
        except sqlite3.IntegrityError as e:
            raise DuplicateUsername(f"username '{username}' is already taken") from e

    def set_user_ban(self, user_id: str, banned_until: Optional[datetime]) -> Optional[User]:
        return self._update_user(user_id, "banned_until = ?", (_ts(banned_until),))

    def set_user_admin(self, user_id: str, is_admin: bool) -> Optional[User]:
        return self._update_user(user_id, "is_admin = ?", (1 if is_admin else 0,))

    def bootstrap_admin(self, user_id: str) -> Optional[User]:
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE users SET is_admin = 1
                WHERE id = ? AND NOT EXISTS (SELECT 1 FROM users WHERE is_admin = 1)
            """, (user_id,))
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row)

    def delete_user(self, user_id: str) -> bool:
        with self._transaction() as conn:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                return False
            rows = conn.execute("""
                SELECT r.* FROM rooms r
                JOIN room_participants p ON p.room_id = r.id
                WHERE r.is_dm = 1 AND p.user_id = ?
            """, (user_id,)).fetchall()
            for row in rows:
                room = self._row_to_room(conn, row)
                remaining = [p for p in room.participants if p != user_id]
                if len(remaining) >= MIN_DM_PARTICIPANTS:
                    try:
                        self._rekey(conn, room, remaining)
                        continue
                    except DuplicateDirectRoom:
                        pass
                # a pair room, or survivors that already share another DM
                conn.execute("DELETE FROM rooms WHERE id = ?", (room.id,))
            conn.execute("""
                UPDATE rooms SET message_count = MAX(0, message_count - (
                    SELECT COUNT(*) FROM messages m WHERE m.room_id = rooms.id AND m.user_id = ?
                ))
                WHERE id IN (SELECT DISTINCT room_id FROM messages WHERE user_id = ?)
            """, (user_id, user_id))
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return True

    # === rooms ===
    def create_room(self, name: str, description: Optional[str] = None, is_dm: bool = False,
                    participants: Optional[Sequence[str]] = None) -> Room:
        members: List[str] = []
        key = None
        if is_dm:
            members = check_participants(list(participants or []))
            key = dm_key(members)
        room_id = str(uuid.uuid4())
        with self._transaction() as conn:
            for uid in members:
                if conn.execute("SELECT 1 FROM users WHERE id = ?", (uid,)).fetchone() is None:
                    raise UserNotFound(f"user {uid} not found")
            try:
                conn.execute("""
                    INSERT INTO rooms (id, name, description, message_count, is_dm, dm_key, created_at)
                    VALUES (?, ?, ?, 0, ?, ?, ?)
                """, (room_id, name, description, 1 if is_dm else 0, key, _ts(self.clock())))
            except sqlite3.IntegrityError as e:
                if is_dm:
                    raise DuplicateDirectRoom("a DM room with these participants already exists") from e
                raise DuplicateRoomName(f"room '{name}' already exists") from e
            conn.executemany(
                "INSERT INTO room_participants (room_id, user_id, position) VALUES (?, ?, ?)",
                [(room_id, uid, pos) for pos, uid in enumerate(members)],
            )
        return Room(id=room_id, name=name, description=description, message_count=0,
                    is_dm=bool(is_dm), participants=members)

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM rooms WHERE id = ?", (room_id,)).fetchone()
            return self._row_to_room(conn, row) if row else None

    def get_room_by_name(self, name: str) -> Optional[Room]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM rooms WHERE name = ? AND is_dm = 0", (name,)).fetchone()
            return self._row_to_room(conn, row) if row else None

    def list_rooms(self) -> List[Room]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT r.*, (SELECT COUNT(*) FROM messages m WHERE m.room_id = r.id) AS live_count
                FROM rooms r WHERE r.is_dm = 0
                ORDER BY r.created_at, r.rowid
            """).fetchall()
            return [self._row_to_room(conn, row, message_count=row["live_count"]) for row in rows]

    def _adjust_count(self, conn, room_id: str, delta: int) -> None:
        conn.execute(
            "UPDATE rooms SET message_count = MAX(0, message_count + ?) WHERE id = ?",
            (delta, room_id),
        )

    def increment_room_message_count(self, room_id: str) -> None:
        with self._transaction() as conn:
            self._adjust_count(conn, room_id, 1)

    def delete_room(self, room_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM rooms WHERE id = ?", (room_id,))
            return cursor.rowcount > 0

    # === direct messages ===
    def find_dm_room(self, user1_id: str, user2_id: str) -> Optional[Room]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM rooms WHERE dm_key = ?",
                               (dm_key([user1_id, user2_id]),)).fetchone()
            return self._row_to_room(conn, row) if row else None

    def list_dm_rooms(self, user_id: str) -> List[Room]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT r.* FROM rooms r
                JOIN room_participants p ON p.room_id = r.id
                WHERE r.is_dm = 1 AND p.user_id = ?
                ORDER BY r.created_at, r.rowid
            """, (user_id,)).fetchall()
            return [self._row_to_room(conn, row) for row in rows]

    def _dm_room_or_raise(self, conn, room_id: str) -> Room:
        row = conn.execute("SELECT * FROM rooms WHERE id = ?", (room_id,)).fetchone()
        if row is None:
            raise RoomNotFound(f"room {room_id} not found")
        if not row["is_dm"]:
            raise InvalidState(f"room {room_id} is not a DM room")
        return self._row_to_room(conn, row)

    def _rekey(self, conn, room: Room, members: List[str]) -> None:
        key = dm_key(members)
        clash = conn.execute("SELECT id FROM rooms WHERE dm_key = ? AND id != ?", (key, room.id)).fetchone()
        if clash is not None:
            raise DuplicateDirectRoom("another DM room already has these participants")
        conn.execute("UPDATE rooms SET dm_key = ? WHERE id = ?", (key, room.id))

    def add_dm_participant(self, room_id: str, user_id: str) -> Room:
        with self._transaction() as conn:
            room = self._dm_room_or_raise(conn, room_id)
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise UserNotFound(f"user {user_id} not found")
            if user_id in room.participants:
                return room
            if len(room.participants) >= MAX_DM_PARTICIPANTS:
                raise InvalidState(f"DM rooms hold at most {MAX_DM_PARTICIPANTS} participants")
            members = room.participants + [user_id]
            self._rekey(conn, room, members)
            conn.execute("""
                INSERT INTO room_participants (room_id, user_id, position)
                VALUES (?, ?, (SELECT COALESCE(MAX(position), -1) + 1 FROM room_participants WHERE room_id = ?))
            """, (room_id, user_id, room_id))
            room.participants = members
            return room

    def remove_dm_participant(self, room_id: str, user_id: str) -> Room:
        with self._transaction() as conn:
            room = self._dm_room_or_raise(conn, room_id)
            if user_id not in room.participants:
                raise UserNotFound(f"user {user_id} is not in room {room_id}")
            if len(room.participants) <= MIN_DM_PARTICIPANTS:
                raise InvalidState(f"DM rooms need at least {MIN_DM_PARTICIPANTS} participants")
            members = [p for p in room.participants if p != user_id]
            self._rekey(conn, room, members)
            conn.execute("DELETE FROM room_participants WHERE room_id = ? AND user_id = ?", (room_id, user_id))
            room.participants = members
            return room

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
        msg = Message(
            id=str(uuid.uuid4()),
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
            poll=poll,
            attachments=list(attachments or []),
        )
        with self._transaction() as conn:
            if conn.execute("SELECT 1 FROM rooms WHERE id = ?", (room_id,)).fetchone() is None:
                raise UnknownRoomReference(f"room {room_id} not found")
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise UnknownUserReference(f"user {user_id} not found")
            conn.execute(f"""
                INSERT INTO messages ({MESSAGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                msg.id, msg.room_id, msg.user_id, msg.content, msg.message_type,
                msg.file_name, msg.file_path, msg.file_size,
                msg.file_group_id, msg.group_index, msg.reply_to_id,
                _ts(msg.created_at), None,
                json.dumps(poll.to_dict()) if poll else None,
                json.dumps(msg.attachments),
            ))
            self._adjust_count(conn, room_id, 1)
        return msg

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            return self._row_to_message(row) if row else None

    def get_messages_by_room(self, room_id: str,
                             limit: int = DEFAULT_MESSAGE_WINDOW) -> List[MessageView]:
        with self._get_connection() as conn:
            if conn.execute("SELECT 1 FROM rooms WHERE id = ?", (room_id,)).fetchone() is None:
                raise RoomNotFound(f"room {room_id} not found")
            rows = conn.execute("""
                SELECT * FROM messages
                WHERE room_id = ?
                ORDER BY created_at DESC, seq DESC LIMIT ?
            """, (room_id, max(limit, 0))).fetchall()
            messages = [self._row_to_message(row) for row in reversed(rows)]
            if not messages:
                return []

            ids = [m.id for m in messages]
            marks = ",".join("?" * len(ids))
            reactions: Dict[str, List[Reaction]] = {}
            for row in conn.execute(
                f"SELECT * FROM reactions WHERE message_id IN ({marks}) ORDER BY created_at, rowid", ids
            ):
                reactions.setdefault(row["message_id"], []).append(self._row_to_reaction(row))

            user_ids = sorted({m.user_id for m in messages})
            marks = ",".join("?" * len(user_ids))
            users = {
                row["id"]: self._row_to_user(row)
                for row in conn.execute(f"SELECT * FROM users WHERE id IN ({marks})", user_ids)
            }
            return build_views(messages, users, reactions)

    def _message_or_raise(self, conn, message_id: str) -> Message:
        row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        if row is None:
            raise MessageNotFound(f"message {message_id} not found")
        return self._row_to_message(row)

    def edit_message(self, message_id: str, content: str) -> Message:
        with self._transaction() as conn:
            msg = self._message_or_raise(conn, message_id)
            msg.content = content
            msg.edited_at = self.clock()
            conn.execute("UPDATE messages SET content = ?, edited_at = ? WHERE id = ?",
                         (content, _ts(msg.edited_at), message_id))
            return msg

    def delete_message(self, message_id: str) -> Message:
        with self._transaction() as conn:
            msg = self._message_or_raise(conn, message_id)
            conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            self._adjust_count(conn, msg.room_id, -1)
            return msg

    def vote_poll(self, message_id: str, user_id: str, option_index: int) -> Message:
        with self._transaction() as conn:
            msg = self._message_or_raise(conn, message_id)
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise UserNotFound(f"user {user_id} not found")
            record_vote(msg, user_id, option_index, self.clock())
            conn.execute("UPDATE messages SET poll = ? WHERE id = ?",
                         (json.dumps(msg.poll.to_dict()), message_id))
            return msg

    def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> bool:
        with self._transaction() as conn:
            self._message_or_raise(conn, message_id)
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise UserNotFound(f"user {user_id} not found")
            cursor = conn.execute(
                "DELETE FROM reactions WHERE message_id = ? AND user_id = ? AND emoji = ?",
                (message_id, user_id, emoji),
            )
            if cursor.rowcount:
                return False
            conn.execute("""
                INSERT INTO reactions (id, message_id, user_id, emoji, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (str(uuid.uuid4()), message_id, user_id, emoji, _ts(self.clock())))
            return True

    def delete_messages_before(self, cutoff: datetime) -> List[Message]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM messages WHERE created_at < ? ORDER BY seq",
                                (_ts(cutoff),)).fetchall()
            expired = [self._row_to_message(row) for row in rows]
            per_room: Dict[str, int] = {}
            for msg in expired:
                per_room[msg.room_id] = per_room.get(msg.room_id, 0) + 1
            for room_id, count in per_room.items():
                self._adjust_count(conn, room_id, -count)
            conn.execute("DELETE FROM messages WHERE created_at < ?", (_ts(cutoff),))
            return expired

    def count_messages_referencing(self, path: str) -> int:
        with self._get_connection() as conn:
            return conn.execute("""
                SELECT COUNT(*) FROM messages m
                WHERE m.file_path = ?
                OR EXISTS (SELECT 1 FROM json_each(m.attachments) a
                           WHERE json_extract(a.value, '$.path') = ?)
            """, (path, path)).fetchone()[0]

    def stats(self) -> dict:
        """Row totals"""
        with self._get_connection() as conn:
            stats = {}
            stats["total_users"] = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            stats["total_rooms"] = conn.execute("SELECT COUNT(*) FROM rooms WHERE is_dm = 0").fetchone()[0]
            stats["dm_rooms"] = conn.execute("SELECT COUNT(*) FROM rooms WHERE is_dm = 1").fetchone()[0]
            stats["total_messages"] = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            stats["total_reactions"] = conn.execute("SELECT COUNT(*) FROM reactions").fetchone()[0]
            return stats
