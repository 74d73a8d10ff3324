"""
Bot account bootstrap
"""
from __future__ import annotations
import logging
from typing import Optional

from nexachat.db.errors import DuplicateUsername
from nexachat.db.models import User, UserStatus

log = logging.getLogger(__name__)

DEFAULT_BOT_USERNAME = "NexaBot"
DEFAULT_BOT_PROFILE_IMAGE = "https://i.imgur.com/2FDBAwR.png"


def ensure_bot_user(repo, username: str = DEFAULT_BOT_USERNAME,
                    profile_image: Optional[str] = DEFAULT_BOT_PROFILE_IMAGE) -> User:
    """Find the bot account or create it. Safe against a concurrent creator of the same name."""
    existing = repo.get_user_by_username(username)
    if existing:
        return existing
    try:
        user = repo.create_user(username, profile_image=profile_image, status=UserStatus.ONLINE.value)
    except DuplicateUsername:
        # lost the race against another process sharing the database
        user = repo.get_user_by_username(username)
        if user is None:
            raise
        return user
    log.info("[bot] account %s created (id=%s)", username, user.id)
    return user
