"""Request cost estimation and batching utilities."""

from __future__ import annotations

import math
import re
from typing import List, Sequence

from .structures import Batch, Segment

TOKEN_SAFETY_FACTOR = 1.1
SEGMENT_TOKEN_OVERHEAD = 8

_TOKEN_PATTERN = re.compile(r"(?P<word>[A-Za-z0-9_]+)|\S")


def _is_cjk_code(code: int) -> bool:
    return (
        0x4E00 <= code <= 0x9FFF  # CJK Unified Ideographs
        or 0x3400 <= code <= 0x4DBF  # Extension A
        or 0xF900 <= code <= 0xFAFF  # Compatibility Ideographs
        or 0x3040 <= code <= 0x30FF  # Hiragana/Katakana
        or 0xAC00 <= code <= 0xD7AF  # Hangul syllables
    )


def contains_cjk(text: str) -> bool:
    """Detect whether the text contains CJK characters."""

    return any(_is_cjk_code(ord(char)) for char in text)


def estimate_tokens(text: str) -> int:
    """Approximate the model token cost of ``text``.

    ASCII word runs cost a quarter token per character (rounded up), every
    other visible character costs one token and whitespace is free. The sum is
    padded by a safety factor because real tokenisers vary.
    """

    if not text:
        return 0
    total = 0
    for match in _TOKEN_PATTERN.finditer(text):
        word = match.group("word")
        if word:
            total += math.ceil(len(word) / 4)
        else:
            total += 1
    return math.ceil(round(total * TOKEN_SAFETY_FACTOR, 6))


def estimate_segment_tokens(text: str) -> int:
    """Token cost of a segment once wrapped with its id in the request."""

    return estimate_tokens(text) + SEGMENT_TOKEN_OVERHEAD


class BatchPlanner:
    """Groups segment ids into batches under char, token and count limits."""

    def __init__(
        self,
        *,
        max_chars: int,
        max_tokens: int,
        max_segments: int,
        base_tokens: int = 0,
    ) -> None:
        self.max_chars = max(1, max_chars)
        self.max_tokens = max(1, max_tokens)
        self.max_segments = max(1, max_segments)
        self.base_tokens = max(0, base_tokens)

    def plan(self, segment_ids: Sequence[int], segments: Sequence[Segment]) -> List[Batch]:
        batches: List[Batch] = []
        current: List[int] = []
        char_total = 0
        token_total = self.base_tokens

        for segment_id in segment_ids:
            text = segments[segment_id].text
            size = len(text)
            cost = estimate_segment_tokens(text)

            if current and (
                len(current) >= self.max_segments
                or char_total + size > self.max_chars
                or token_total + cost > self.max_tokens
            ):
                batches.append(Batch(batch_id=len(batches) + 1, segment_ids=current))
                current = []
                char_total = 0
                token_total = self.base_tokens

            current.append(segment_id)
            char_total += size
            token_total += cost

        if current:
            batches.append(Batch(batch_id=len(batches) + 1, segment_ids=current))

        return batches
