"""Tests for output hygiene."""

from __future__ import annotations

import pytest

from sanctum.rag.output import RepetitionGuard, clean_response, split_at_control


@pytest.mark.parametrize(
    "piece,expected",
    [
        ("plain", ("plain", False)),
        ("done<|im_end|>junk", ("done", True)),
        ("<|endoftext|>", ("", True)),
        ("a<|im_start|>user", ("a", True)),
    ],
)
def test_split_at_control(piece, expected):
    assert split_at_control(piece) == expected


def test_clean_response_strips_tokens_and_whitespace():
    assert clean_response("  Paris.<|im_end|>\n") == "Paris."


def test_clean_response_drops_echoed_role():
    assert clean_response("assistant\nParis is the capital.") == "Paris is the capital."
    assert clean_response("The assistant\nsaid") == "The assistant\nsaid"


def test_clean_response_whitespace_only_is_empty():
    assert clean_response(" \n<|im_end|>\t") == ""


def test_repetition_guard_detects_loop():
    guard = RepetitionGuard(check_every=1)
    assert guard.looping("I cannot help with that. " * 3)


def test_repetition_guard_ignores_normal_text():
    guard = RepetitionGuard(check_every=1)
    assert not guard.looping(" ".join(f"word{i}" for i in range(200)))


def test_repetition_guard_ignores_whitespace_runs():
    guard = RepetitionGuard(check_every=1)
    assert not guard.looping("Answer:" + " " * 200)


def test_repetition_guard_checks_periodically():
    guard = RepetitionGuard(check_every=4)
    text = "I cannot help with that. " * 3
    assert [guard.looping(text) for _ in range(4)] == [False, False, False, True]
