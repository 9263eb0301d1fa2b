from __future__ import annotations

import json
from typing import Any, Callable, List, Sequence, Union

import pytest

from mdtranslate.configuration import TranslatorConfig
from mdtranslate.policy import RetryPolicy
from mdtranslate.prompts import extract_envelope
from mdtranslate.providers import ChatProvider
from mdtranslate.structures import ChatRequest

Reply = Union[str, dict, BaseException, Callable[[dict], Any]]


def prefix_translations(prefix: str) -> Callable[[dict], dict]:
    """Responder that prepends ``prefix`` to every requested segment."""

    def _respond(payload: dict) -> dict:
        if "items" in payload:
            return {"decisions": [{"id": item["id"], "accept": False} for item in payload["items"]]}
        return {
            "translations": [
                {"id": segment["id"], "text": prefix + segment["text"]}
                for segment in payload["segments"]
            ]
        }

    return _respond


class ScriptedProvider(ChatProvider):
    """Replays canned replies in order and records every request payload."""

    def __init__(self, script: Sequence[Reply] = (), default: Reply | None = None) -> None:
        self.script: List[Reply] = list(script)
        self.default = default
        self.requests: List[ChatRequest] = []
        self.payloads: List[dict] = []

    async def complete(self, request: ChatRequest) -> str:
        payload = extract_envelope(request.user_content())
        self.requests.append(request)
        self.payloads.append(payload)
        if self.script:
            reply = self.script.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise AssertionError("ScriptedProvider ran out of replies")

        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(payload)
        if isinstance(reply, dict):
            return json.dumps(reply, ensure_ascii=False)
        return reply

    @property
    def translation_payloads(self) -> List[dict]:
        return [payload for payload in self.payloads if "segments" in payload]


class RecordingLogger:
    def __init__(self) -> None:
        self.events: List[tuple[str, str, Any]] = []

    def info(self, event: str, payload: Any = None) -> None:
        self.events.append(("info", event, payload))

    def warn(self, event: str, payload: Any = None) -> None:
        self.events.append(("warn", event, payload))

    def error(self, event: str, payload: Any = None) -> None:
        self.events.append(("error", event, payload))

    def names(self, level: str | None = None) -> List[str]:
        return [name for lvl, name, _ in self.events if level is None or lvl == level]


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def config() -> TranslatorConfig:
    return TranslatorConfig(api_key="test-key", retry_times=3).normalized()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(base_delay_ms=500, max_delay_ms=8000, jitter_ms=100, rng=lambda: 0.0)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def notices() -> List[str]:
    return []
