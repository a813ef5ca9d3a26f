import pytest

from leaderboard_core import MISSING, ScoringMode, coerce_mode, compare, parse_value, sort_key
from leaderboard_core.comparators import parse_count, parse_elapsed_time


def test_parse_elapsed_time_reads_base_60_segments():
    assert parse_elapsed_time("7:32") == 452
    assert parse_elapsed_time("8:15") == 495
    assert parse_elapsed_time("1:02:03") == 3723
    assert parse_elapsed_time("95") == 95
    assert parse_elapsed_time(" 10:12 ") == 612


def test_parse_elapsed_time_rejects_malformed_segments():
    assert parse_elapsed_time("7:xx") is None
    assert parse_elapsed_time("7::32") is None
    assert parse_elapsed_time("") is None
    assert parse_elapsed_time("-1:00") is None
    assert parse_elapsed_time(None) is None
    assert parse_elapsed_time(MISSING) is None


def test_parse_count_handles_integers_only():
    assert parse_count("345") == 345
    assert parse_count(" 287 ") == 287
    assert parse_count(120) == 120
    assert parse_count("12.5") is None
    assert parse_count("1_000") is None
    assert parse_count("abc") is None
    assert parse_count(True) is None


def test_time_mode_lower_is_better():
    assert compare("7:32", "8:15", "time") == -1
    assert compare("8:15", "7:32", ScoringMode.TIME) == 1
    assert compare("7:32", "7:32", "time") == 0


def test_reps_and_weight_higher_is_better():
    assert compare("345", "287", "reps") == -1
    assert compare("287", "345", "reps") == 1
    assert compare("225", "185", "weight") == -1
    assert compare("100", "100", "weight") == 0


@pytest.mark.parametrize("mode", ["time", "reps", "weight"])
def test_missing_and_unparsable_sort_after_present_values(mode):
    assert compare(MISSING, "10", mode) == 1
    assert compare("10", MISSING, mode) == -1
    assert compare("not-a-score", "10", mode) == 1
    assert compare(MISSING, "not-a-score", mode) == 0
    assert compare(MISSING, MISSING, mode) == 0


def test_sorting_is_stable_for_equal_values():
    values = [("a", "300"), ("b", "250"), ("c", "300"), ("d", MISSING), ("e", "300")]
    ordered = sorted(values, key=lambda item: sort_key(item[1], "reps"))
    assert [name for name, _ in ordered] == ["a", "c", "e", "b", "d"]


def test_parse_value_follows_mode():
    assert parse_value("7:32", "time") == 452
    # a time string is not a rep count
    assert parse_value("7:32", "reps") is None
    assert parse_value("345", "weight") == 345


def test_coerce_mode_accepts_long_spellings():
    assert coerce_mode("elapsed-time") is ScoringMode.TIME
    assert coerce_mode("Repetition-Count") is ScoringMode.REPS
    assert coerce_mode("load-lifted") is ScoringMode.WEIGHT
    assert coerce_mode(ScoringMode.REPS) is ScoringMode.REPS
    with pytest.raises(ValueError):
        coerce_mode("distance")


def test_missing_is_a_falsy_singleton():
    from copy import deepcopy

    assert not MISSING
    assert deepcopy(MISSING) is MISSING
    assert repr(MISSING) == "MISSING"
