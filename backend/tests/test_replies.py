import pytest

from feynman.replies import ReplyParseError, extract_json_array, extract_json_object, strip_fences


FENCED = [
	'```json\n[{"name": "A"}]\n```',
	'```JSON\n[{"name": "A"}]\n```\n',
	'```\n[{"name": "A"}]\n```',
	'```json[{"name": "A"}]```',
	'  ```python\r\n[{"name": "A"}]\r\n```  ',
]


@pytest.mark.parametrize("raw", FENCED)
def test_strip_fences_removes_wrapping(raw):
	assert strip_fences(raw).strip() == '[{"name": "A"}]'


@pytest.mark.parametrize("raw", FENCED + ["plain text", "  padded  ", "", "```json\n```json\n[1]\n```\n```"])
def test_strip_fences_is_idempotent(raw):
	once = strip_fences(raw)
	assert strip_fences(once) == once


@pytest.mark.parametrize("raw", ['[{"name": "A"}]', "  spaced out\n", "Here is `code` inline"])
def test_strip_fences_leaves_unfenced_text_unchanged(raw):
	assert strip_fences(raw) == raw


def test_strip_fences_handles_nested_wrapping():
	assert strip_fences("```json\n```json\n[1]\n```\n```") == "[1]"


def test_extract_array_from_prose():
	raw = 'Sure! Here are the topics:\n[{"name": "A"}, {"name": "B"}]\nLet me know if you need more.'
	assert extract_json_array(raw) == [{"name": "A"}, {"name": "B"}]


def test_extract_array_from_wrapping_object():
	assert extract_json_array('{"topics": [{"name": "A"}]}') == [{"name": "A"}]


def test_extract_array_failure_keeps_raw():
	with pytest.raises(ReplyParseError) as info:
		extract_json_array("I could not find any topics.")
	assert info.value.raw == "I could not find any topics."


def test_extract_array_rejects_empty_reply():
	with pytest.raises(ReplyParseError):
		extract_json_array("```json\n```")


def test_extract_object_with_fence_and_prose():
	raw = 'Evaluation below.\n```json\n{"score": 70, "feedback": "ok"}\n```'
	assert extract_json_object(raw) == {"score": 70, "feedback": "ok"}


def test_extract_object_rejects_list():
	with pytest.raises(ReplyParseError):
		extract_json_object("[1, 2, 3]")
