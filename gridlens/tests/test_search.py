import pytest

from gridlens.engine.search import FUZZY, LITERAL, REGEX, SearchState, search
from gridlens.errors import ParseError
from gridlens.models.table import Table
from gridlens.util import closest_matches, similarity


def _names():
    return Table.from_rows(["name", "city"], [("John", "Oslo"), ("Jon", "Rome"), ("Joanna", "Lyon")])


def test_fuzzy_orders_by_descending_score():
    assert search(_names(), "jo", FUZZY) == [(1, 0), (0, 0), (2, 0)]


def test_fuzzy_scores_subsequences_above_threshold():
    assert similarity("jo", "Jon") > similarity("jo", "John") > similarity("jo", "Joanna") >= 0.5
    assert similarity("", "anything") == 0.0


def test_literal_is_row_major_and_case_insensitive():
    assert search(_names(), "o", LITERAL) == [(0, 0), (0, 1), (1, 0), (1, 1), (2, 0), (2, 1)]
    assert search(_names(), "JON", LITERAL) == [(1, 0)]


def test_literal_case_sensitive():
    assert search(_names(), "jo", LITERAL, case_sensitive=True) == []
    assert search(_names(), "Jo", LITERAL, case_sensitive=True) == [(0, 0), (1, 0), (2, 0)]


def test_regex_matches_cell_text():
    t = Table.from_rows(["n"], [(10,), (7,), (None,), (123,)])
    assert search(t, r"^\d{2,}$", REGEX) == [(0, 0), (3, 0)]


def test_invalid_regex_is_parse_error():
    with pytest.raises(ParseError) as ex:
        search(_names(), "(", REGEX)
    assert getattr(ex.value, "code", None) == "E_REGEX"


def test_empty_query_matches_nothing():
    assert search(_names(), "", LITERAL) == []


def test_search_state_cycles_both_ways():
    state = SearchState()
    state.set_query(_names(), "on")
    assert state.matches == [(1, 0), (2, 1)]
    assert state.first_from((0, 0)) == (1, 0)
    assert state.next_from((1, 0)) == (2, 1)
    assert state.next_from((2, 1)) == (1, 0)
    assert state.prev_from((1, 0)) == (2, 1)
    assert state.summary() == "/on: 2/2"


def test_search_state_first_from_wraps_past_last_match():
    state = SearchState()
    state.set_query(_names(), "john")
    assert state.first_from((2, 1)) == (0, 0)


def test_search_state_keeps_previous_query_on_bad_regex():
    state = SearchState()
    state.set_query(_names(), "Jon")
    with pytest.raises(ParseError):
        state.set_query(_names(), "[", mode=REGEX)
    assert state.query == "Jon"
    assert state.mode == LITERAL
    assert state.matches == [(1, 0)]


def test_search_state_recompute_and_clear():
    state = SearchState()
    state.set_query(_names(), "Oslo")
    state.first_from((0, 0))
    state.recompute(Table.from_rows(["city"], [("Rome",)]))
    assert state.matches == []
    assert state.current() is None
    assert state.summary() == "/Oslo: no matches"
    state.clear()
    assert state.summary() == ""


def test_closest_matches_for_suggestions():
    assert closest_matches("fliter", ["find", "filter", "quit"]) == ["filter"]
    assert closest_matches("zzz", ["find", "filter"]) == []
