import random
from datetime import datetime

from nexachat.bot.commands import COMMAND_FAILED, HELP_TEXT, UNKNOWN_COMMAND, CommandInterpreter


class StubGenerator:
    def __init__(self):
        self.calls = []

    def generate(self, prompt, context=None):
        self.calls.append(("generate", prompt, context))
        return "42"

    def translate(self, text, target_lang="en"):
        self.calls.append(("translate", text))
        return "hello"

    def explain(self, topic):
        raise RuntimeError("model crashed")


def test_non_commands_are_ignored():
    bot = CommandInterpreter()
    assert bot.handle("hello there") is None
    assert bot.handle(None) is None
    assert bot.handle("   ") is None


def test_help_and_unknown():
    bot = CommandInterpreter()
    assert bot.handle("!help") == HELP_TEXT
    assert bot.handle("!HELP") == HELP_TEXT
    assert bot.handle("!dance") == UNKNOWN_COMMAND
    assert "!dice" in bot.handle("!commands")


def test_dice_coin_random_are_seeded():
    bot = CommandInterpreter(rng=random.Random(7))
    roll = bot.handle("!dice")
    assert roll.startswith("🎲 You rolled ")
    assert 1 <= int(roll.rsplit(" ", 1)[1]) <= 6
    assert bot.handle("!coin") in ("🪙 Heads", "🪙 Tails")

    value = int(bot.handle("!random 10 1").rsplit(" ", 1)[1])
    assert 1 <= value <= 10
    assert bot.handle("!random x y") == "Usage: !random <min> <max>"
    assert bot.handle("!random 3") == "Usage: !random <min> <max>"


def test_time_uses_injected_clock():
    bot = CommandInterpreter(now=lambda: datetime(2024, 5, 1, 9, 30, 0))
    assert bot.handle("!time") == "🕐 2024-05-01 09:30:00"


def test_ai_commands_without_generator():
    bot = CommandInterpreter()
    assert bot.handle("!ask what?") == "AI features are disabled on this server."
    assert bot.handle("!ask") == "Usage: !ask <question>"


def test_ai_commands_delegate():
    gen = StubGenerator()
    bot = CommandInterpreter(generator=gen)
    assert bot.handle("!ask meaning of life", context="alice: !ask meaning of life") == "42"
    assert gen.calls[0] == ("generate", "meaning of life", "alice: !ask meaning of life")
    assert bot.handle("!translate bonjour") == "hello"


def test_handler_failure_becomes_fixed_reply():
    bot = CommandInterpreter(generator=StubGenerator())
    assert bot.handle("!explain gravity") == COMMAND_FAILED
