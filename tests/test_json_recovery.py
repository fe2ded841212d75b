from codestudio.json_recovery import extract_json_candidates, first_json_object


def test_extracts_object_wrapped_in_prose_and_fences():
    text = 'Sure! Here is the plan:\n```json\n{"a1": "build the UI", "a2": "write tests"}\n```\nGood luck.'
    assert extract_json_candidates(text) == [{"a1": "build the UI", "a2": "write tests"}]


def test_brackets_inside_strings_do_not_close_candidate():
    text = 'prefix {"a": "}{]["} suffix'
    assert extract_json_candidates(text) == [{"a": "}{]["}]


def test_escaped_quotes_inside_strings():
    text = 'x {"say": "he said \\"hi}\\""} y'
    assert extract_json_candidates(text) == [{"say": 'he said "hi}"'}]


def test_raw_newlines_inside_strings_are_repaired():
    text = '{"code": "line one\nline two"}'
    assert extract_json_candidates(text) == [{"code": "line one\nline two"}]


def test_truncated_fragment_is_dropped_and_valid_one_kept():
    text = 'first {"ok": true} then {"broken": [1, 2'
    assert extract_json_candidates(text) == [{"ok": True}]


def test_multiple_candidates_in_closing_order():
    text = '[1, 2] and {"b": {"c": 1}}'
    assert extract_json_candidates(text) == [[1, 2], {"b": {"c": 1}}]


def test_invalid_candidate_is_skipped():
    text = "{not json} {\"x\": 1}"
    assert extract_json_candidates(text) == [{"x": 1}]


def test_mismatched_closer_is_ignored():
    text = '{"a": 1]}'
    # The stray ] does not pop the stack, so the slice is invalid JSON and dropped.
    assert extract_json_candidates(text) == []


def test_no_json_returns_empty():
    assert extract_json_candidates("plain text with 'quotes' and \"double quotes\"") == []
    assert extract_json_candidates("") == []


def test_first_json_object_skips_arrays():
    assert first_json_object('[1] {"k": "v"}') == {"k": "v"}
    assert first_json_object("[1, 2]") is None
