import pathlib

import pytest

from mdtranslate.documents import (
    MarkdownDocument,
    collect_markdown_files,
    ensure_markdown_path,
    looks_like_markdown,
    match_trailing_newline,
)
from mdtranslate.errors import UnsupportedFileTypeError

SAMPLE = """\
---
title: Front matter stays
---

# Getting started

Install the `pip` package and visit <https://example.com> for docs.

![diagram alt](diagram.png)

<div>raw html</div>

- First *item*
- Second [link text](https://example.com/a)

```python
print("code stays")
```
"""


def texts(source):
    return [segment.text for segment in MarkdownDocument(source).extract_segments()]


def test_extracts_only_translatable_text():
    extracted = texts(SAMPLE)

    assert "Getting started" in extracted
    assert "First " in extracted
    assert "item" in extracted
    assert "link text" in extracted
    joined = " ".join(extracted)
    assert "pip" not in joined
    assert "https://example.com" not in joined
    assert "code stays" not in joined
    assert "raw html" not in joined
    assert "Front matter" not in joined
    assert "diagram alt" not in joined


def test_segment_ids_follow_document_order():
    segments = MarkdownDocument("# One\n\nTwo\n\n- Three\n").extract_segments()
    assert [(s.segment_id, s.text) for s in segments] == [(0, "One"), (1, "Two"), (2, "Three")]
    assert segments[0].location == "line 1"


def test_render_writes_back_translations_and_keeps_code():
    document = MarkdownDocument("# Title\n\nHello world.\n\n```js\nconst x=1;\n```\n")
    for segment in document.extract_segments():
        segment.apply("译:" + segment.text)

    rendered = document.render()

    assert "# 译:Title" in rendered
    assert "译:Hello world." in rendered
    assert "```js\nconst x=1;\n```" in rendered


def test_markdown_code_block_detection():
    source = (
        "```markdown\n# Inner\n```\n\n"
        "```\n- a list\n- of items\n```\n\n"
        "```\nplain words only\n```\n\n"
        "```python\n# comment\n```\n"
    )
    document = MarkdownDocument(source)

    blocks = document.extract_markdown_code_blocks()

    assert [block.content for block in blocks] == ["# Inner\n", "- a list\n- of items\n"]
    assert [block.block_id for block in blocks] == [0, 1]


def test_looks_like_markdown():
    assert looks_like_markdown("Some **bold** text")
    assert looks_like_markdown("> quoted")
    assert not looks_like_markdown("just a sentence")


def test_match_trailing_newline():
    assert match_trailing_newline("a\n", "b") == "b\n"
    assert match_trailing_newline("a\n", "b\n") == "b\n"
    assert match_trailing_newline("a", "b\n\n") == "b"


def test_ensure_markdown_path():
    ensure_markdown_path(pathlib.Path("README.md"))
    ensure_markdown_path(pathlib.Path("notes.MARKDOWN"))
    with pytest.raises(UnsupportedFileTypeError):
        ensure_markdown_path(pathlib.Path("notes.txt"))


def test_collect_markdown_files_skips_vendor_folders(tmp_path: pathlib.Path):
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "guide.md").write_text("# Guide\n", encoding="utf-8")
    (tmp_path / "README.markdown").write_text("# Readme\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("skip", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.md").write_text("# Dep\n", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD.md").write_text("# Git\n", encoding="utf-8")

    found = collect_markdown_files(tmp_path)

    assert found == sorted([tmp_path / "README.markdown", tmp_path / "docs" / "guide.md"])


def test_hard_wrapped_paragraph_is_one_segment():
    document = MarkdownDocument("This sentence is hard wrapped\nacross two source lines here.\n")

    segments = document.extract_segments()

    assert [s.text for s in segments] == ["This sentence is hard wrapped\nacross two source lines here."]

    segments[0].apply("这个句子被硬换行\n分成了两行。")
    assert "这个句子被硬换行\n分成了两行。" in document.render()


def test_wrapped_run_collapses_when_translation_has_no_newline():
    document = MarkdownDocument("First half of a line\nsecond half of it.\n")
    segment = document.extract_segments()[0]

    segment.apply("一整句话。")

    assert document.render().strip() == "一整句话。"


def test_inline_markup_splits_runs():
    extracted = texts("Plain *em* tail\nnext line\n")
    assert extracted == ["Plain ", "em", " tail\nnext line"]


def test_indented_code_is_not_markdown():
    assert not looks_like_markdown("def f():\n    x = 1\n\n    return x\n")
    document = MarkdownDocument("```\ndef f():\n    x = 1\n\n    return x\n```\n")
    assert document.extract_markdown_code_blocks() == []
