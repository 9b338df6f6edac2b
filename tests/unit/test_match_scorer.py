"""Unit tests for place-name match scoring."""

import pytest

from linkimport.services.match_scorer import score_place_match


def test_exact_match_scores_one() -> None:
    assert score_place_match("  Roscioli ", "roscioli") == 1.0


def test_name_containing_query_scores_high() -> None:
    assert score_place_match("Eiffel Tower", "Eiffel Tower, Paris") >= 0.95


def test_disjoint_names_score_zero() -> None:
    assert score_place_match("sushi", "Very Good Ramen House") == 0


def test_token_overlap_is_order_independent() -> None:
    assert score_place_match("Museum Louvre", "Louvre Museum") == 1.0


def test_partial_overlap_is_a_ratio() -> None:
    assert score_place_match("Louvre Museum", "Orsay Museum") == pytest.approx(0.5)


def test_stop_words_and_short_tokens_are_ignored() -> None:
    # "the", "of" and "x" drop out, leaving "pantheon" and "rome"
    assert score_place_match("The Pantheon of Rome x", "Pantheon") == pytest.approx(0.5)


def test_query_of_only_stop_words_scores_zero() -> None:
    assert score_place_match("the a of", "The Place") == 0


def test_no_typo_tolerance() -> None:
    assert score_place_match("Colloseum", "Colosseum") == 0


@pytest.mark.parametrize("query,name", [("", "Louvre"), ("Louvre", ""), ("   ", "   ")])
def test_empty_inputs_score_zero(query: str, name: str) -> None:
    assert score_place_match(query, name) == 0


def test_non_ascii_names_tokenize() -> None:
    assert score_place_match("Café de Flore", "Le Café de Flore Paris") == 0.95
    assert score_place_match("Flore Café", "Café de Flore") == 1.0
