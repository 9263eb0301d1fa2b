"""Parsing and validation of raw model replies."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from .errors import CountMismatchError, ResponseParseError

ID_KEYS = ("id", "index", "key")
TEXT_KEYS = ("text", "translation", "value")
ACCEPT_KEYS = ("accept", "approve", "ok")

_FENCED_BLOCK = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\n(.*?)```", re.DOTALL)
_TRUE_WORDS = {"true", "yes", "y", "1"}


@dataclass(frozen=True)
class StringArray:
    """Every element was a plain string; align positionally."""

    values: List[str]


@dataclass(frozen=True)
class ObjectArrayById:
    """Elements carried an id and a text; align by id."""

    by_id: Dict[int, str]


@dataclass(frozen=True)
class Fallback:
    """Anything else, coerced to text positionally."""

    values: List[str]


DecodedTranslations = Union[StringArray, ObjectArrayById, Fallback]


@dataclass(frozen=True)
class JudgeDecision:
    accept: bool
    reason: str = ""


def strip_code_fence(text: str) -> str:
    """Remove a single leading/trailing markdown code fence if present."""

    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped

    # Drop opening fence and optional language hint.
    first_newline = stripped.find("\n")
    if first_newline == -1:
        return stripped
    body = stripped[first_newline + 1 :]
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()


def _balanced_objects(text: str) -> Iterator[str]:
    """Yield every ``{...}`` slice whose braces balance outside of strings."""

    for start, char in enumerate(text):
        if char != "{":
            continue
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            current = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif current == "\\":
                    escaped = True
                elif current == '"':
                    in_string = False
                continue
            if current == '"':
                in_string = True
            elif current == "{":
                depth += 1
            elif current == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break


def _candidates(content: str) -> Iterator[str]:
    for match in _FENCED_BLOCK.finditer(content):
        yield match.group(1).strip()
    yield from _balanced_objects(content)


def parse_model_response(content: str) -> Any:
    """Extract the JSON payload from a model reply, tolerating noise."""

    text = strip_code_fence(content or "")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for candidate in _candidates(content or ""):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ResponseParseError("Failed to parse JSON from model response")


def _coerce_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() else None
    return None


def _first_present(item: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def _coerce_text(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in TEXT_KEYS:
            if isinstance(item.get(key), str):
                return item[key]
    if item is None:
        return ""
    return str(item)


def decode_translations(parsed: Any) -> DecodedTranslations:
    """Resolve the shape of the ``translations`` array once."""

    if not isinstance(parsed, dict) or not isinstance(parsed.get("translations"), list):
        raise ResponseParseError("Model response missing translations array")

    raw = parsed["translations"]
    if all(isinstance(item, str) for item in raw):
        return StringArray(values=list(raw))

    by_id: Dict[int, str] = {}
    for item in raw:
        if not isinstance(item, dict):
            continue
        raw_id = _first_present(item, ID_KEYS)
        text = _first_present(item, TEXT_KEYS)
        if raw_id is None or text is None:
            continue
        segment_id = _coerce_id(raw_id)
        if segment_id is not None:
            by_id[segment_id] = str(text)
    if by_id:
        return ObjectArrayById(by_id=by_id)

    return Fallback(values=[_coerce_text(item) for item in raw])


def normalize_translations(parsed: Any, expected_ids: Sequence[int]) -> List[str]:
    """Return translations aligned to ``expected_ids`` or raise.

    Missing ids, a wrong element count and unfilled slots are all reported as
    :class:`CountMismatchError`; nothing is truncated or padded.
    """

    decoded = decode_translations(parsed)
    expected = len(expected_ids)

    if isinstance(decoded, ObjectArrayById):
        projected: List[Optional[str]] = [decoded.by_id.get(i) for i in expected_ids]
        missing = [i for i, value in zip(expected_ids, projected) if value is None]
        if missing:
            raise CountMismatchError(
                expected=expected,
                actual=expected - len(missing),
                missing_ids=missing,
            )
    else:
        projected = list(decoded.values)

    if len(projected) != expected:
        raise CountMismatchError(expected=expected, actual=len(projected))
    if any(value is None for value in projected):
        raise CountMismatchError(
            expected=expected,
            actual=sum(1 for value in projected if value is not None),
        )
    return [str(value) for value in projected]


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_WORDS
    return False


def parse_judge_decisions(parsed: Any) -> Dict[int, JudgeDecision]:
    """Map segment ids to the judge's accept/reject decisions."""

    if not isinstance(parsed, dict) or not isinstance(parsed.get("decisions"), list):
        raise ResponseParseError("Judge response missing decisions array")

    decisions: Dict[int, JudgeDecision] = {}
    for item in parsed["decisions"]:
        if not isinstance(item, dict):
            continue
        segment_id = _coerce_id(_first_present(item, ID_KEYS))
        if segment_id is None:
            continue
        reason = item.get("reason")
        decisions[segment_id] = JudgeDecision(
            accept=coerce_boolean(_first_present(item, ACCEPT_KEYS)),
            reason=reason if isinstance(reason, str) else "",
        )
    return decisions
