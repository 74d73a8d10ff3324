"""
Bot command interpreter: a dispatch table over "!"-prefixed chat commands.
"""
from __future__ import annotations
import logging
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .ai import TextGenerator

log = logging.getLogger(__name__)

PREFIX = "!"
UNKNOWN_COMMAND = "Unknown command! Type !help to see all commands."
COMMAND_FAILED = "Something went wrong, please try again."

HELP_TEXT = """NexaBot commands
!ask <question> - ask the AI
!translate <text> - translate to English
!explain <topic> - short explanation
!dice - roll a 1-6 die
!coin - flip a coin
!random <min> <max> - random number
!time - current time
!info - about the bot
!commands - list command names
!help - this menu"""


class CommandInterpreter:
    def __init__(self, generator: Optional[TextGenerator] = None,
                 rng: Optional[random.Random] = None,
                 now: Callable[[], datetime] = datetime.now):
        self.generator = generator
        self.rng = rng or random.Random()
        self.now = now
        self.commands: Dict[str, Callable[[List[str], Optional[str]], str]] = {
            "!help": self._help,
            "!commands": self._commands,
            "!dice": self._dice,
            "!coin": self._coin,
            "!random": self._random,
            "!time": self._time,
            "!info": self._info,
            "!ask": self._ask,
            "!translate": self._translate,
            "!explain": self._explain,
        }

    @staticmethod
    def is_command(content: Optional[str]) -> bool:
        return bool(content) and content.strip().startswith(PREFIX)

    def handle(self, content: Optional[str], context: Optional[str] = None) -> Optional[str]:
        """Reply text for a command, or None when content is not a command."""
        if not self.is_command(content):
            return None
        args = content.strip().split()
        handler = self.commands.get(args[0].lower())
        if handler is None:
            return UNKNOWN_COMMAND
        try:
            return handler(args[1:], context)
        except Exception:
            log.exception("[bot] command %s failed", args[0])
            return COMMAND_FAILED

    def _help(self, args, context):
        return HELP_TEXT

    def _commands(self, args, context):
        return "Commands: " + ", ".join(sorted(self.commands))

    def _dice(self, args, context):
        return f"🎲 You rolled {self.rng.randint(1, 6)}"

    def _coin(self, args, context):
        return "🪙 " + self.rng.choice(["Heads", "Tails"])

    def _random(self, args, context):
        usage = "Usage: !random <min> <max>"
        if len(args) < 2:
            return usage
        try:
            low, high = int(args[0]), int(args[1])
        except ValueError:
            return usage
        if low > high:
            low, high = high, low
        return f"🔢 Random number between {low} and {high}: {self.rng.randint(low, high)}"

    def _time(self, args, context):
        return "🕐 " + self.now().strftime("%Y-%m-%d %H:%M:%S")

    def _info(self, args, context):
        return "🤖 NexaBot keeps every room company. Type !help for what I can do."

    def _needs_generator(self, args, usage) -> Optional[str]:
        if not args:
            return usage
        if self.generator is None:
            return "AI features are disabled on this server."
        return None

    def _ask(self, args, context):
        blocked = self._needs_generator(args, "Usage: !ask <question>")
        return blocked or self.generator.generate(" ".join(args), context)

    def _translate(self, args, context):
        blocked = self._needs_generator(args, "Usage: !translate <text>")
        return blocked or self.generator.translate(" ".join(args))

    def _explain(self, args, context):
        blocked = self._needs_generator(args, "Usage: !explain <topic>")
        return blocked or self.generator.explain(" ".join(args))
