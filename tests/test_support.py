import json
import pathlib

from mdtranslate.eventlog import JsonLinesEventLogger
from mdtranslate.glossary import build_glossary_entries
from mdtranslate.progress import ProgressBar
from mdtranslate.prompts import (
    PromptSet,
    build_translation_messages,
    build_translation_payload,
    extract_envelope,
    load_prompt_set,
)
from mdtranslate.structures import ProgressUpdate


def test_json_lines_logger_appends_entries(tmp_path: pathlib.Path):
    path = tmp_path / "logs" / "run.log"
    logger = JsonLinesEventLogger(path)

    logger.warn("translation_retry_scheduled", {"delay_seconds": 0.5})
    logger.error("chat_completion_failed", {"error": "boom"})

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [(line["level"], line["message"]) for line in lines] == [
        ("warn", "translation_retry_scheduled"),
        ("error", "chat_completion_failed"),
    ]
    assert lines[0]["data"] == {"delay_seconds": 0.5}
    assert "timestamp" in lines[0]


def test_translation_envelope_round_trips():
    entries = build_glossary_entries({"API": "接口"})
    payload = build_translation_payload(
        segments=[{"id": 3, "text": "Use the API."}],
        glossary_entries=entries,
        missing_entries=entries,
        source_language="English",
        target_language="Simplified Chinese",
    )

    system, user = build_translation_messages("  System prompt.  ", payload)

    assert system.role == "system" and system.content == "System prompt."
    assert user.content.startswith("INPUT JSON:\n")
    assert "Return JSON only" in user.content
    assert extract_envelope(user.content) == {
        "source_language": "English",
        "target_language": "Simplified Chinese",
        "glossary": [{"source": "API", "target": "接口"}],
        "segments": [{"id": 3, "text": "Use the API."}],
        "missing_terms": [{"source": "API", "target": "接口"}],
    }


def test_prompt_files_override_defaults(tmp_path: pathlib.Path):
    path = tmp_path / "prompt.txt"
    path.write_text("Custom translator prompt.", encoding="utf-8")

    prompts = load_prompt_set(path, None)

    assert prompts.translate == "Custom translator prompt."
    assert prompts.judge == PromptSet().judge


def test_progress_bar_tracks_updates():
    bar = ProgressBar("doc.md", disable=True)

    bar(ProgressUpdate(0, 4))
    bar(ProgressUpdate(2, 4))
    assert bar._bar is not None and bar._bar.n == 2

    bar(ProgressUpdate(4, 4))
    assert bar._bar is None


def test_json_lines_logger_reuses_one_handle(tmp_path: pathlib.Path):
    path = tmp_path / "run.log"

    with JsonLinesEventLogger(path) as logger:
        logger.info("batch_state", {"to": "resolved"})
        handle = logger._handle
        logger.warn("batch_fallback_to_singletons")
        assert logger._handle is handle
        assert len(path.read_text(encoding="utf-8").splitlines()) == 2

    assert logger._handle is None
    logger.error("chat_completion_failed")
    logger.close()
    assert len(path.read_text(encoding="utf-8").splitlines()) == 3
