"""Markdown document extraction and reinsertion utilities."""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from typing import Any, Iterator, List, MutableMapping, Optional, Sequence

from markdown_it import MarkdownIt
from markdown_it.token import Token
from mdformat._util import build_mdit
from mdformat.renderer import MDRenderer

from .errors import UnsupportedFileTypeError
from .structures import Segment, TextSetter

MARKDOWN_SUFFIXES = frozenset({".md", ".markdown"})
MARKDOWN_EXTENSIONS = ("gfm", "frontmatter")
MARKDOWN_LANGUAGES = frozenset({"markdown", "md"})

# Node kinds whose subtree is never translated.
SKIP_TYPES = frozenset(
    {
        "code_block",
        "fence",
        "code_inline",
        "html_block",
        "html_inline",
        "front_matter",
        "math_block",
        "math_block_eqno",
        "math_inline",
        "image",
    }
)
AUTOLINK_MARKUPS = frozenset({"autolink", "linkify"})

BLOCK_MARKERS = frozenset(
    {
        "heading_open",
        "bullet_list_open",
        "ordered_list_open",
        "blockquote_open",
        "hr",
        "table_open",
        "fence",
        "html_block",
    }
)
INLINE_MARKERS = frozenset(
    {"link_open", "image", "em_open", "strong_open", "s_open", "hardbreak"}
)


def build_markdown_parser() -> MarkdownIt:
    """Parser whose renderer serializes tokens back to Markdown."""

    return build_mdit(MDRenderer, extensions=MARKDOWN_EXTENSIONS)


@dataclass
class MarkdownCodeBlock:
    """A fenced block whose content is itself translatable Markdown."""

    block_id: int
    content: str
    setter: TextSetter
    location: str

    def apply(self, translated: str) -> None:
        self.setter(translated)


def _location(token: Token) -> str:
    if token.map:
        return f"line {token.map[0] + 1}"
    return "unknown line"


def _run_setter(run: Sequence[Token]) -> TextSetter:
    """Write into the first text token and blank the rest of the run."""

    def _setter(value: str) -> None:
        head, *rest = run
        head.content = value
        for token in rest:
            token.type = "text"
            token.tag = ""
            token.markup = ""
            token.content = ""

    return _setter


def fence_language(token: Token) -> str:
    info = (token.info or "").strip()
    if not info:
        return ""
    return info.split(maxsplit=1)[0].lower()


def _trim_run(run: List[Token]) -> List[Token]:
    start, end = 0, len(run)
    while start < end and run[start].type == "softbreak":
        start += 1
    while end > start and run[end - 1].type == "softbreak":
        end -= 1
    return run[start:end]


def _iter_inline_runs(children: Sequence[Token]) -> Iterator[List[Token]]:
    """Group adjacent text and soft line breaks into one run.

    A hard-wrapped sentence stays a single run; any other inline node ends it.
    """

    link_stack: List[bool] = []
    run: List[Token] = []
    for child in children:
        in_autolink = any(link_stack)
        if child.type in ("text", "softbreak") and not in_autolink:
            run.append(child)
            continue
        trimmed = _trim_run(run)
        if trimmed:
            yield trimmed
        run = []
        if child.type == "link_open":
            link_stack.append(child.markup in AUTOLINK_MARKUPS or child.info == "auto")
        elif child.type == "link_close" and link_stack:
            link_stack.pop()
    trimmed = _trim_run(run)
    if trimmed:
        yield trimmed


def run_text(run: Sequence[Token]) -> str:
    return "".join("\n" if token.type == "softbreak" else token.content or "" for token in run)


def iter_text_runs(tokens: Sequence[Token]) -> Iterator[tuple[Token, List[Token]]]:
    """Yield ``(inline_token, run)`` pairs in document order."""

    for token in tokens:
        if token.type in SKIP_TYPES:
            continue
        if token.type == "inline" and token.children:
            for run in _iter_inline_runs(token.children):
                yield token, run


def looks_like_markdown(content: str, parser: Optional[MarkdownIt] = None) -> bool:
    """Return True when ``content`` uses at least one Markdown construct."""

    mdit = parser or build_markdown_parser()
    for token in mdit.parse(content, {}):
        if token.type in BLOCK_MARKERS:
            return True
        if token.type == "inline" and any(
            child.type in INLINE_MARKERS for child in token.children or []
        ):
            return True
    return False


class MarkdownDocument:
    """A parsed Markdown document whose leaf text can be rewritten."""

    def __init__(self, source: str, *, parser: Optional[MarkdownIt] = None) -> None:
        self.source = source
        self._mdit = parser or build_markdown_parser()
        self.env: MutableMapping[str, Any] = {}
        self.tokens: List[Token] = self._mdit.parse(source, self.env)

    def extract_segments(self) -> List[Segment]:
        segments: List[Segment] = []
        for inline, run in iter_text_runs(self.tokens):
            segments.append(
                Segment(
                    segment_id=len(segments),
                    text=run_text(run),
                    setter=_run_setter(run),
                    location=_location(inline),
                )
            )
        return segments

    def is_markdown_code_block(self, token: Token) -> bool:
        if token.type != "fence":
            return False
        language = fence_language(token)
        if language:
            return language in MARKDOWN_LANGUAGES
        return looks_like_markdown(token.content, self._mdit)

    def extract_markdown_code_blocks(self) -> List[MarkdownCodeBlock]:
        blocks: List[MarkdownCodeBlock] = []
        for token in self.tokens:
            if not self.is_markdown_code_block(token):
                continue
            blocks.append(
                MarkdownCodeBlock(
                    block_id=len(blocks),
                    content=token.content,
                    setter=_run_setter([token]),
                    location=_location(token),
                )
            )
        return blocks

    def render(self) -> str:
        return self._mdit.renderer.render(self.tokens, self._mdit.options, self.env)


def match_trailing_newline(original: str, translated: str) -> str:
    """Give ``translated`` the same trailing-newline presence as ``original``."""

    if original.endswith("\n"):
        return translated if translated.endswith("\n") else translated + "\n"
    return translated.rstrip("\n")


def ensure_markdown_path(path: pathlib.Path) -> None:
    if path.suffix.lower() not in MARKDOWN_SUFFIXES:
        raise UnsupportedFileTypeError(
            "This file type isn't supported, please use .md or .markdown."
        )


def collect_markdown_files(root: pathlib.Path) -> List[pathlib.Path]:
    """Recursively list Markdown files, skipping VCS and dependency folders."""

    files: List[pathlib.Path] = []
    for entry in sorted(root.iterdir()):
        if entry.name in {".git", "node_modules"}:
            continue
        if entry.is_dir():
            files.extend(collect_markdown_files(entry))
        elif entry.is_file() and entry.suffix.lower() in MARKDOWN_SUFFIXES:
            files.append(entry)
    return sorted(files)
