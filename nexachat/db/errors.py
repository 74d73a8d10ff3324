"""Error taxonomy for the storage layer and the service boundary.

Every error carries a short ``code`` (stable, machine readable) and the HTTP
``status`` the bridge answers with.
"""
from __future__ import annotations


class ChatError(Exception):
    code = "internal"
    status = 500

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "status": self.status}


class NotFound(ChatError):
    code = "not-found"
    status = 404


class UserNotFound(NotFound):
    pass


class RoomNotFound(NotFound):
    pass


class MessageNotFound(NotFound):
    pass


class DuplicateName(ChatError):
    code = "duplicate-name"
    status = 409


class DuplicateUsername(DuplicateName):
    pass


class DuplicateRoomName(DuplicateName):
    pass


class InvalidReference(ChatError):
    code = "invalid-reference"
    status = 404


class UnknownRoomReference(InvalidReference, RoomNotFound):
    code = "invalid-reference"
    status = 404


class UnknownUserReference(InvalidReference, UserNotFound):
    code = "invalid-reference"
    status = 404


class InvalidState(ChatError):
    code = "invalid-state"
    status = 409


class DuplicateDirectRoom(InvalidState):
    """Another DM room already has exactly this participant set."""


class InvalidInput(ChatError):
    code = "invalid-input"
    status = 400


class PermissionDenied(ChatError):
    code = "forbidden"
    status = 403


__all__ = [
    "ChatError",
    "NotFound",
    "UserNotFound",
    "RoomNotFound",
    "MessageNotFound",
    "DuplicateName",
    "DuplicateUsername",
    "DuplicateRoomName",
    "InvalidReference",
    "UnknownRoomReference",
    "UnknownUserReference",
    "InvalidState",
    "DuplicateDirectRoom",
    "InvalidInput",
    "PermissionDenied",
]
