"""System prompts and request message builders."""

from __future__ import annotations

import json
import pathlib
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from .errors import MdTranslateError
from .structures import ChatMessage, GlossaryEntry

DEFAULT_TRANSLATE_PROMPT = """\
You are a professional technical translator working on Markdown documents.
You receive a JSON object with text segments extracted from a Markdown file.
Each segment is the plain text of one node; Markdown syntax around it has
already been removed and will be restored afterwards.

Rules:
- Translate every segment from the source language into the target language.
- Keep the segment ids exactly as given and return one item per id.
- Preserve leading and trailing whitespace, numbers, placeholders, URLs,
  file paths and identifiers that look like code.
- Apply every glossary entry: when a source term appears, its target term
  must appear in the translation.
- When "missing_terms" is present, your previous answer ignored those
  glossary entries; make sure each target term is used this time.
- Return JSON only. Do not add commentary.
"""

DEFAULT_JUDGE_PROMPT = """\
You review translations that did not use a mandated glossary term.
For each item decide whether the translation is still acceptable, for example
because the term is used in a different sense, is part of a proper name, or is
rendered by an equivalent grammatical form of the target term.
Accept only when using the literal target term would make the translation
wrong or unnatural. Return JSON only.
"""

ENVELOPE_MARKER = "INPUT JSON:\n"


@dataclass(frozen=True)
class PromptSet:
    """The system prompts for translation and glossary judging.

    ``judge`` may be None, in which case no judge call is made.
    """

    translate: str = DEFAULT_TRANSLATE_PROMPT
    judge: Optional[str] = DEFAULT_JUDGE_PROMPT


def load_prompt(path: pathlib.Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MdTranslateError(f"Prompt file could not be read: {path} ({exc})") from exc


def load_prompt_set(
    translate_path: Optional[pathlib.Path] = None,
    judge_path: Optional[pathlib.Path] = None,
) -> PromptSet:
    return PromptSet(
        translate=load_prompt(translate_path) if translate_path else DEFAULT_TRANSLATE_PROMPT,
        judge=load_prompt(judge_path) if judge_path else DEFAULT_JUDGE_PROMPT,
    )


def build_translation_payload(
    *,
    segments: Sequence[Mapping[str, Any]],
    glossary_entries: Sequence[GlossaryEntry],
    missing_entries: Sequence[GlossaryEntry] = (),
    source_language: str,
    target_language: str,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "source_language": source_language,
        "target_language": target_language,
        "glossary": [entry.as_payload() for entry in glossary_entries],
        "segments": [dict(segment) for segment in segments],
    }
    if missing_entries:
        payload["missing_terms"] = [entry.as_payload() for entry in missing_entries]
    return payload


def _envelope(payload: Mapping[str, Any]) -> str:
    return ENVELOPE_MARKER + json.dumps(payload, ensure_ascii=False, indent=2)


def build_translation_messages(
    system_prompt: str,
    payload: Mapping[str, Any],
) -> tuple[ChatMessage, ...]:
    target = payload.get("target_language", "the target language")
    instructions = (
        "\n\nReturn JSON only with the exact shape: "
        '{"translations": [{"id": <id>, "text": <translated>}, ...]}.\n'
        "- Include one item for every input segment id.\n"
        f"- Every segment must be translated to {target}.\n"
        "- Do not return the original text unless the segment is only "
        "punctuation, symbols, or numbers."
    )
    return (
        ChatMessage(role="system", content=system_prompt.strip()),
        ChatMessage(role="user", content=_envelope(payload) + instructions),
    )


def build_judge_messages(
    system_prompt: str,
    payload: Mapping[str, Any],
) -> tuple[ChatMessage, ...]:
    instructions = (
        "\n\nReturn JSON only with the exact shape: "
        '{"decisions": [{"id": <id>, "accept": <true|false>, "reason": <string>}, ...]}.'
    )
    return (
        ChatMessage(role="system", content=system_prompt.strip()),
        ChatMessage(role="user", content=_envelope(payload) + instructions),
    )


def extract_envelope(user_content: str) -> dict[str, Any]:
    """Recover the JSON envelope from a user message built above."""

    start = user_content.find(ENVELOPE_MARKER)
    if start == -1:
        raise MdTranslateError("User message does not contain an INPUT JSON envelope")
    body = user_content[start + len(ENVELOPE_MARKER) :]
    end = body.find("\n\nReturn JSON only")
    if end != -1:
        body = body[:end]
    return json.loads(body)
