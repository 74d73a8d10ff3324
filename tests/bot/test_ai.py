import requests

from nexachat.bot.ai import FALLBACK, UNAVAILABLE, AIConfig, TextGenerator


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, params=None, json=None, timeout=None):
        self.requests.append({"url": url, "params": params, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def _answer(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_missing_key_short_circuits():
    session = FakeSession(FakeResponse(_answer("hi")))
    gen = TextGenerator(AIConfig(api_key=""), session)
    assert gen.generate("hello") == UNAVAILABLE
    assert session.requests == []


def test_generate_sends_prompt_and_key():
    session = FakeSession(FakeResponse(_answer("Hi alice!")))
    gen = TextGenerator(AIConfig(api_key="k", endpoint="http://ai.local/gen", timeout=3), session)
    assert gen.generate("hello", context="alice: hello") == "Hi alice!"

    sent = session.requests[0]
    assert sent["url"] == "http://ai.local/gen"
    assert sent["params"] == {"key": "k"}
    assert sent["timeout"] == 3
    prompt = sent["json"]["contents"][0]["parts"][0]["text"]
    assert "alice: hello" in prompt
    assert prompt.endswith("Question: hello")


def test_transport_errors_fall_back():
    gen = TextGenerator(AIConfig(api_key="k"), FakeSession(error=requests.ConnectionError("down")))
    assert gen.generate("x") == FALLBACK
    gen = TextGenerator(AIConfig(api_key="k"), FakeSession(FakeResponse(_answer("x"), status=503)))
    assert gen.translate("x") == FALLBACK
    gen = TextGenerator(AIConfig(api_key="k"), FakeSession(FakeResponse(None)))
    assert gen.explain("x") == FALLBACK


def test_malformed_payload_uses_empty_reply():
    gen = TextGenerator(AIConfig(api_key="k"), FakeSession(FakeResponse({"candidates": []})))
    assert gen.translate("bonjour") == "Translation failed."
    assert gen.explain("x") == "No information found on this topic."
