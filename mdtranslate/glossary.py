"""Glossary loading, term matching and coverage checks."""

from __future__ import annotations

import json
import pathlib
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import MdTranslateError
from .structures import GlossaryEntry

_ALNUM_TERM = re.compile(r"^[A-Za-z0-9]+$")
_LINE_COMMENT = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*')


def compile_term_pattern(term: str) -> re.Pattern[str]:
    """Word-bounded for plain alphanumeric terms, substring otherwise.

    Boundaries are ASCII only, so "API" still matches inside "调用API即可".
    """

    escaped = re.escape(term)
    if _ALNUM_TERM.match(term):
        return re.compile(rf"(?<![A-Za-z0-9_]){escaped}(?![A-Za-z0-9_])", re.IGNORECASE)
    return re.compile(escaped, re.IGNORECASE)


def build_glossary_entries(glossary: Mapping[str, str]) -> List[GlossaryEntry]:
    return [
        GlossaryEntry(source=source, target=target, pattern=compile_term_pattern(source))
        for source, target in glossary.items()
        if source and target
    ]


def terms_in_text(text: str, entries: Sequence[GlossaryEntry]) -> List[GlossaryEntry]:
    """Return the entries whose source term occurs in ``text``."""

    return [entry for entry in entries if entry.pattern.search(text)]


def union_entries(groups: Iterable[Sequence[GlossaryEntry]]) -> List[GlossaryEntry]:
    """Merge entry lists, keeping the first entry per source term."""

    merged: Dict[str, GlossaryEntry] = {}
    for group in groups:
        for entry in group:
            merged.setdefault(entry.source, entry)
    return list(merged.values())


def check_glossary(
    pending_ids: Sequence[int],
    segment_terms: Sequence[Sequence[GlossaryEntry]],
    translations: Sequence[str],
) -> Dict[int, List[GlossaryEntry]]:
    """Map each pending id to the required target terms its translation lacks.

    ``translations`` is aligned with ``pending_ids``.
    """

    missing_map: Dict[int, List[GlossaryEntry]] = {}
    for position, segment_id in enumerate(pending_ids):
        required = segment_terms[segment_id]
        if not required:
            continue
        translated = translations[position] or ""
        missing = [entry for entry in required if entry.target not in translated]
        if missing:
            missing_map[segment_id] = missing
    return missing_map


def flatten_missing_entries(missing_map: Mapping[int, Sequence[GlossaryEntry]]) -> List[GlossaryEntry]:
    return union_entries(missing_map.values())


def _strip_json_comments(raw: str) -> str:
    return _LINE_COMMENT.sub(lambda match: match.group(1) or "", raw)


def _read_glossary_file(path: pathlib.Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MdTranslateError(f"Glossary file could not be read: {path} ({exc})") from exc
    try:
        data = json.loads(_strip_json_comments(raw))
    except json.JSONDecodeError as exc:
        raise MdTranslateError(f"Glossary file is not valid JSON: {path} ({exc})") from exc
    if not isinstance(data, dict):
        raise MdTranslateError(f"Glossary must be a JSON object: {path}")
    return data


def load_glossary(
    path: Optional[pathlib.Path] = None,
    inline: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    """Merge a glossary file with inline entries; inline entries win."""

    merged: Dict[str, Any] = {}
    if path is not None:
        merged.update(_read_glossary_file(path))
    if inline:
        merged.update(inline)

    glossary: Dict[str, str] = {}
    for source, target in merged.items():
        if target is None:
            continue
        glossary[str(source)] = target if isinstance(target, str) else str(target)
    return glossary
