"""Core data structures for the mdtranslate pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, List


TextSetter = Callable[[str], None]


@dataclass
class Segment:
    """A single leaf text node ready for translation.

    ``segment_id`` is the position of the node in extraction order and stays
    stable across every batch derived from it.
    """

    segment_id: int
    text: str
    setter: TextSetter
    location: str = ""

    def apply(self, translated: str) -> None:
        """Write the translated value back into the document tree."""

        self.setter(translated)


@dataclass(frozen=True)
class GlossaryEntry:
    """A mandated source term and the target term it must become."""

    source: str
    target: str
    pattern: re.Pattern[str] = field(compare=False, repr=False)

    def as_payload(self) -> dict[str, str]:
        return {"source": self.source, "target": self.target}


@dataclass
class Batch:
    """An ordered group of segment ids sent together in one request."""

    batch_id: int
    segment_ids: List[int]


@dataclass(frozen=True)
class ProgressUpdate:
    """Resolved versus total non-empty segments."""

    done: int
    total: int

    @property
    def finished(self) -> bool:
        return self.total == 0 or self.done >= self.total


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def as_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    """A single chat completion call issued to a provider."""

    model: str
    messages: tuple[ChatMessage, ...]
    temperature: float
    max_tokens: int
    timeout: float

    def user_content(self) -> str:
        for message in self.messages:
            if message.role == "user":
                return message.content
        return ""
