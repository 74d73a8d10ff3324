"""
Text generation client used by the bot (Gemini-style generateContent endpoint)
"""
import logging
import requests
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger(__name__)

DEFAULT_ENDPOINT = (
    "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"
)
BOT_PERSONA = (
    "You are NexaBot, a friendly and helpful chat bot. "
    "Answer briefly and clearly, at most 200 characters. Address users by name."
)

UNAVAILABLE = "AI features are not available right now (missing API key)."
FALLBACK = "The AI service cannot answer right now. Please try again later."


@dataclass
class AIConfig:
    api_key: str = ""
    endpoint: str = DEFAULT_ENDPOINT
    timeout: float = 10.0


class TextGenerator:
    """Generation API client. Every failure turns into a fixed fallback string."""

    def __init__(self, config: AIConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def _generate(self, prompt: str, empty_reply: str) -> str:
        if not self.config.api_key:
            return UNAVAILABLE
        try:
            response = self.session.post(
                self.config.endpoint,
                params={"key": self.config.api_key},
                json={"contents": [{"parts": [{"text": prompt}]}]},
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            log.error("[ai] request failed: %s", e)
            return FALLBACK
        try:
            text = data["candidates"][0]["content"]["parts"][0].get("text")
        except (KeyError, IndexError, TypeError, AttributeError):
            return empty_reply
        return text or empty_reply

    def generate(self, prompt: str, context: Optional[str] = None) -> str:
        preamble = BOT_PERSONA
        if context:
            preamble += f" Conversation context: {context}"
        return self._generate(f"{preamble}\n\nQuestion: {prompt}",
                              "Sorry, I can't answer that right now.")

    def translate(self, text: str, target_lang: str = "en") -> str:
        language = "English" if target_lang == "en" else target_lang
        return self._generate(f'Translate this text into {language}: "{text}"',
                              "Translation failed.")

    def explain(self, topic: str) -> str:
        return self._generate(f'Explain "{topic}" simply, in about 150 words.',
                              "No information found on this topic.")
