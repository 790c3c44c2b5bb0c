import logging

import pytest

from genflow.providers.conditions import (
    ExpressionError,
    compile_expression,
    evaluate_condition,
    loose_equals,
    tokenize,
)


@pytest.mark.parametrize(
    "fields, expression, expected",
    [
        ({"status": "succeed"}, 'status == "succeed"', True),
        ({"status": "running"}, "status == 'succeed'", False),
        ({"status": "COMPLETED"}, 'status == "succeed" || status == "COMPLETED"', True),
        ({"status": "failed", "code": 3}, 'status == "failed" && code != 0', True),
        ({"status": "failed", "code": 0}, 'status == "failed" and code != 0', False),
        ({"status": "queued"}, '!(status == "queued")', False),
        ({"status": "queued"}, 'not status == "done"', True),
        ({"progress": 100}, "progress >= 100", True),
        ({"progress": "42"}, "progress < 50", True),
        ({"data": {"state": 2}}, "data.state == 2", True),
        ({"ok": True}, "ok == true", True),
    ],
)
def test_evaluate_condition(fields, expression, expected):
    assert evaluate_condition(fields, expression) is expected


def test_numeric_strings_compare_loosely():
    assert evaluate_condition({"code": "2"}, "code == 2")
    assert not evaluate_condition({"code": "2"}, "code === 2")
    assert evaluate_condition({"code": 2}, "code === 2")
    assert evaluate_condition({"code": "2"}, "code !== 2")


def test_missing_and_null_fields_compare_as_empty_string():
    assert evaluate_condition({}, 'status == ""')
    assert evaluate_condition({"status": None}, 'status == ""')
    assert not evaluate_condition({}, 'status == "succeed"')


def test_empty_expression_is_false():
    assert evaluate_condition({"status": "x"}, "") is False
    assert evaluate_condition({"status": "x"}, "   ") is False
    assert evaluate_condition({"status": "x"}, None) is False


@pytest.mark.parametrize(
    "expression",
    ['status == ', 'status = "x"', '(status == "x"', 'status == "x" &&', "#"],
)
def test_malformed_expression_fails_closed(expression, caplog):
    with caplog.at_level(logging.WARNING, logger="genflow.providers.conditions"):
        assert evaluate_condition({"status": "x"}, expression) is False
    assert "Condition evaluation failed" in caplog.text


def test_ordering_incomparable_values_fails_closed():
    assert evaluate_condition({"status": "x"}, "status > 3") is False


def test_compile_is_cached():
    assert compile_expression('a == "b"') is compile_expression('a == "b"')


def test_compile_raises_expression_error():
    with pytest.raises(ExpressionError):
        compile_expression("a ==")


def test_tokenize_word_operators_and_escapes():
    kinds = [(t.kind, t.value) for t in tokenize(r'a and not b or c == "x\"y"')]
    assert kinds == [
        ("name", "a"),
        ("op", "&&"),
        ("op", "!"),
        ("name", "b"),
        ("op", "||"),
        ("name", "c"),
        ("op", "=="),
        ("str", 'x"y'),
        ("end", None),
    ]


def test_loose_equals_null_and_bool():
    assert loose_equals(None, None)
    assert not loose_equals(None, "")
    assert loose_equals(0, False)
