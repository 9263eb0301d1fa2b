import pytest

from mdtranslate.errors import CountMismatchError, ResponseParseError
from mdtranslate.responses import (
    Fallback,
    ObjectArrayById,
    StringArray,
    decode_translations,
    normalize_translations,
    parse_judge_decisions,
    parse_model_response,
    strip_code_fence,
)


def test_parse_plain_json():
    assert parse_model_response('{"translations": ["a"]}') == {"translations": ["a"]}


def test_parse_fenced_json_with_leading_prose():
    content = (
        "Sure! Here is the translation you asked for:\n\n"
        "```json\n"
        '{"translations": [{"id": 0, "text": "你好"}]}\n'
        "```\n"
        "Let me know if you need anything else."
    )
    assert parse_model_response(content) == {"translations": [{"id": 0, "text": "你好"}]}


def test_parse_recovers_balanced_object_from_noise():
    content = 'Result: {"translations": ["a {brace} in text", "b"]} trailing words }'
    assert parse_model_response(content) == {"translations": ["a {brace} in text", "b"]}


def test_parse_failure_raises():
    with pytest.raises(ResponseParseError, match="Failed to parse JSON"):
        parse_model_response("no json here at all")


def test_strip_code_fence_only_touches_fenced_text():
    assert strip_code_fence("```json\n{}\n```") == "{}"
    assert strip_code_fence("  {}  ") == "{}"


def test_decode_shapes():
    assert isinstance(decode_translations({"translations": ["a", "b"]}), StringArray)
    decoded = decode_translations({"translations": [{"index": "1", "translation": "b"}]})
    assert decoded == ObjectArrayById(by_id={1: "b"})
    assert isinstance(decode_translations({"translations": [1, None]}), Fallback)


def test_decode_requires_translations_array():
    with pytest.raises(ResponseParseError):
        decode_translations({"result": []})


def test_normalize_aligns_by_id_regardless_of_order():
    parsed = {"translations": [{"id": 7, "text": "seven"}, {"id": 3, "text": "three"}]}
    assert normalize_translations(parsed, [3, 7]) == ["three", "seven"]


def test_normalize_positional_strings():
    assert normalize_translations({"translations": ["x", "y"]}, [10, 11]) == ["x", "y"]


def test_mismatch_on_one_missing_entry():
    parsed = {"translations": ["only", "two"]}
    with pytest.raises(CountMismatchError) as excinfo:
        normalize_translations(parsed, [0, 1, 2])
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    assert "incorrect number of translations" in str(excinfo.value)


def test_mismatch_reports_missing_ids():
    parsed = {"translations": [{"id": 0, "text": "a"}, {"id": 2, "text": "c"}]}
    with pytest.raises(CountMismatchError) as excinfo:
        normalize_translations(parsed, [0, 1, 2])
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    assert excinfo.value.missing_ids == [1]


def test_judge_decisions_accept_aliases():
    parsed = {
        "decisions": [
            {"id": 0, "accept": True, "reason": "fine"},
            {"id": "1", "approve": "yes"},
            {"index": 2, "ok": 0},
            {"reason": "no id"},
        ]
    }
    decisions = parse_judge_decisions(parsed)
    assert decisions[0].accept and decisions[0].reason == "fine"
    assert decisions[1].accept
    assert not decisions[2].accept
    assert set(decisions) == {0, 1, 2}


def test_judge_decisions_require_array():
    with pytest.raises(ResponseParseError):
        parse_judge_decisions({"translations": []})
