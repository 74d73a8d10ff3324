from pydantic import BaseModel, field_validator
from typing import Dict, Literal, Optional
import re

DEFAULT_ROOMS = {
    "general-chat": "A place where everyone can talk",
    "random": "For random conversations",
    "gaming": "Game talk",
    "music": "Share your music",
}


class ServerConfig(BaseModel):
    CONFIG_VERSION: int = 1

    HOST: str = "0.0.0.0"
    HTTP_PORT: int = 8080

    BACKEND: Literal["memory", "sqlite"] = "sqlite"
    DB_PATH: str = "nexachat.db"
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    DEFAULT_ROOMS: Dict[str, Optional[str]] = dict(DEFAULT_ROOMS)
    MESSAGE_WINDOW: int = 50
    MAX_CONTENT_LENGTH: int = 1000
    OFFLINE_AFTER_SEC: float = 300.0

    TYPING_FRESH_SEC: float = 5.0
    TYPING_EXPIRE_SEC: float = 10.0
    TYPING_SWEEP_INTERVAL_SEC: float = 10.0

    RETENTION_HOURS: float = 24.0
    RETENTION_INTERVAL_SEC: float = 24 * 60 * 60

    BOT_ENABLED: bool = True
    BOT_USERNAME: str = "NexaBot"
    BOT_PROFILE_IMAGE: Optional[str] = "https://i.imgur.com/2FDBAwR.png"

    AI_API_KEY: str = ""
    AI_ENDPOINT: str = (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"
    )
    AI_TIMEOUT_SEC: float = 10.0

    LOG_LEVEL: Literal["INFO", "DEBUG", "WARN", "ERROR"] = "INFO"

    @field_validator("HTTP_PORT")
    @classmethod
    def validate_port(cls, v: int):
        # 0 = let the OS pick (tests, ad-hoc runs)
        if v != 0 and not (1024 <= v <= 65535):
            raise ValueError("HTTP_PORT must be 0 or 1024-65535")
        return v

    @field_validator("BOT_USERNAME")
    @classmethod
    def validate_bot_username(cls, v: str):
        if not re.fullmatch(r"[A-Za-z0-9_-]{1,32}", v):
            raise ValueError("BOT_USERNAME allows [A-Za-z0-9_-], 1-32 chars")
        return v

    @field_validator("DEFAULT_ROOMS")
    @classmethod
    def validate_rooms(cls, v: Dict[str, Optional[str]]):
        for name in v:
            if not (1 <= len(name) <= 64) or " " in name:
                raise ValueError(f"room name '{name}' must be 1-64 chars without spaces")
        return v

    @field_validator(
        "MESSAGE_WINDOW", "MAX_CONTENT_LENGTH", "MAX_UPLOAD_BYTES",
    )
    @classmethod
    def validate_positive_int(cls, v: int):
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator(
        "OFFLINE_AFTER_SEC", "TYPING_FRESH_SEC", "TYPING_EXPIRE_SEC",
        "TYPING_SWEEP_INTERVAL_SEC", "RETENTION_HOURS", "RETENTION_INTERVAL_SEC", "AI_TIMEOUT_SEC",
    )
    @classmethod
    def validate_positive(cls, v: float):
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    def masked(self) -> dict:
        data = self.model_dump()
        if data.get("AI_API_KEY"):
            data["AI_API_KEY"] = "***"
        return data
