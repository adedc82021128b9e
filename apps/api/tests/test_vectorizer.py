import math

import pytest

from tutor_api.services.retrieval.vectorizer import (
    cosine_similarity,
    tokenize,
    vectorize,
    vectorize_text,
)


def test_tokenize_lowercases_and_drops_punctuation() -> None:
    assert tokenize("Hello, World! It's 2024 -- snake_case.") == [
        "hello",
        "world",
        "it",
        "s",
        "2024",
        "snake",
        "case",
    ]


def test_tokenize_keeps_unicode_letters_and_digits() -> None:
    assert tokenize("Ça va? Grüße aus München, 東京 ٣") == [
        "ça",
        "va",
        "grüße",
        "aus",
        "münchen",
        "東京",
        "٣",
    ]


def test_vectorize_counts_terms_and_computes_norm() -> None:
    vector = vectorize(["a", "b", "a", "c", "a"])

    assert vector.frequencies == {"a": 3, "b": 1, "c": 1}
    assert vector.norm == pytest.approx(math.sqrt(11))


def test_vectorization_is_deterministic() -> None:
    text = "The mitochondria is the powerhouse of the cell. The cell divides."

    first = vectorize_text(text)
    second = vectorize_text(text)

    assert first == second


def test_identical_text_has_similarity_one() -> None:
    vector = vectorize_text("photosynthesis converts light into chemical energy")

    assert cosine_similarity(vector, vector) == pytest.approx(1.0)


def test_zero_norm_query_scores_zero() -> None:
    empty = vectorize_text("?!...")
    chunk = vectorize_text("any content at all")

    assert empty.norm == 0
    assert cosine_similarity(empty, chunk) == 0.0
    assert cosine_similarity(chunk, empty) == 0.0


@pytest.mark.parametrize(
    ("left", "right"),
    [
        ("capital of France", "Paris is the capital of France."),
        ("a a a a b", "b b b b a"),
        ("unrelated words", "completely different terms"),
        ("x", "x x x x x x x x x x x x x"),
    ],
)
def test_similarity_stays_within_bounds_and_is_symmetric(left: str, right: str) -> None:
    a = vectorize_text(left)
    b = vectorize_text(right)

    score = cosine_similarity(a, b)

    assert -1.0 <= score <= 1.0
    assert score == pytest.approx(cosine_similarity(b, a))
