"""Heuristics that flag translations left in the source language."""

from __future__ import annotations

import re

from .segmenter import contains_cjk

MIN_NATURAL_LENGTH = 30
MIN_ALPHA_DENSITY = 0.45
MIN_SOURCE_WORDS = 6
MIN_TRANSLATED_WORDS = 4
OVERLAP_THRESHOLD = 0.85

_WORD_PATTERN = re.compile(r"[A-Za-z]+(?:'[A-Za-z]+)?")
_ALPHA_PATTERN = re.compile(r"[A-Za-z]")
_URL_PATTERN = re.compile(r"https?://", re.IGNORECASE)
_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9\s]")
_SPACE_PATTERN = re.compile(r"\s+")


def english_word_count(text: str) -> int:
    return len(_WORD_PATTERN.findall(text))


def normalize_comparable_text(text: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""

    lowered = _NON_ALNUM_PATTERN.sub(" ", text.lower())
    return _SPACE_PATTERN.sub(" ", lowered).strip()


def is_natural_language_segment(text: str) -> bool:
    """Return True when ``text`` reads like a sentence of English prose.

    Short labels, code-ish fragments, URLs and text already containing CJK
    are exempt from the untranslated check.
    """

    trimmed = (text or "").strip()
    if len(trimmed) < MIN_NATURAL_LENGTH:
        return False
    if contains_cjk(trimmed):
        return False
    if _URL_PATTERN.search(trimmed):
        return False
    alpha_count = len(_ALPHA_PATTERN.findall(trimmed))
    if alpha_count / len(trimmed) < MIN_ALPHA_DENSITY:
        return False
    return english_word_count(trimmed) >= MIN_SOURCE_WORDS


def is_likely_untranslated(source: str, translation: str | None) -> bool:
    """Flag a translation that is effectively the unchanged source text."""

    if not is_natural_language_segment(source):
        return False
    translated = (translation or "").strip()
    if not translated:
        return True
    if contains_cjk(translated):
        return False

    source_normalized = normalize_comparable_text(source)
    translated_normalized = normalize_comparable_text(translated)
    if not translated_normalized:
        return True
    if source_normalized == translated_normalized:
        return True

    source_words = source_normalized.split()
    translated_words = translated_normalized.split()
    if len(source_words) < MIN_SOURCE_WORDS or len(translated_words) < MIN_TRANSLATED_WORDS:
        return False

    source_set = set(source_words)
    overlap = sum(1 for word in translated_words if word in source_set)
    ratio = overlap / max(len(source_words), len(translated_words))
    return ratio >= OVERLAP_THRESHOLD
