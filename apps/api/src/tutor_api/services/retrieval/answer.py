"""Lightweight extractive answering used when no remote model is reachable."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Literal

from tutor_api.services.retrieval.vectorizer import cosine_similarity, vectorize_text

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_ASCII_WORD = re.compile(r"[a-z0-9]+")

STOP_WORDS = frozenset(
    {
        "the", "is", "are", "of", "to", "and", "a", "in", "that",
        "it", "as", "for", "on", "with", "this", "by", "an", "be",
    }
)

TutorMode = Literal["friendly", "socratic", "exam", "motivational"]
TutorLevel = Literal["eli5", "normal", "expert"]


@dataclass(frozen=True)
class TutorProfile:
    mode: TutorMode = "friendly"
    level: TutorLevel = "normal"
    subject: str | None = None
    grade: str | int | None = None


def _words(text: str) -> list[str]:
    return _ASCII_WORD.findall(text.lower())


def split_sentences(text: str) -> list[str]:
    parts = [
        part.strip()
        for part in _SENTENCE_END.split(_WHITESPACE.sub(" ", text))
        if part.strip()
    ]
    if parts:
        return parts
    stripped = text.strip()
    return [stripped] if stripped else []


def top_k_sentences(text: str, query: str, k: int = 1) -> list[str]:
    query_vector = vectorize_text(query)
    scored = [
        (cosine_similarity(vectorize_text(sentence), query_vector), sentence)
        for sentence in split_sentences(text)
    ]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [sentence for _, sentence in scored[:k]]


def lightweight_summarize(text: str, max_sentences: int = 4) -> str:
    """Frequency-scored extractive summary; selected sentences keep document order."""
    sentences = split_sentences(text)
    if len(sentences) <= max_sentences:
        return " ".join(sentences)

    frequencies: dict[str, int] = {}
    for sentence in sentences:
        for word in _words(sentence):
            if word in STOP_WORDS:
                continue
            frequencies[word] = frequencies.get(word, 0) + 1

    scores = [
        sum(frequencies.get(word, 0) for word in _words(sentence))
        for sentence in sentences
    ]
    ranked = sorted(range(len(sentences)), key=lambda index: scores[index], reverse=True)
    selected = sorted(ranked[:max_sentences])
    return " ".join(sentences[index] for index in selected)


def lightweight_qa(question: str, context: str) -> str:
    question_words = set(_words(question))
    sentences = [
        sentence.strip() for sentence in _SENTENCE_END.split(context) if sentence.strip()
    ]
    if not sentences:
        return ""

    best_score = 0
    best_sentence = sentences[0]
    for sentence in sentences:
        score = sum(1 for word in _words(sentence) if word in question_words)
        if score > best_score:
            best_score = score
            best_sentence = sentence
    return best_sentence


def local_tutor_reply(
    query: str,
    *,
    mode: TutorMode = "friendly",
    level: TutorLevel = "normal",
    subject: str | None = None,
    grade: str | int | None = None,
) -> str:
    subject_part = f" in {subject}" if subject else ""
    grade_part = f" for grade {grade}" if grade else ""
    if level == "eli5":
        intro = "Let's keep it super simple."
    elif level == "expert":
        intro = "Let's go a bit deeper."
    else:
        intro = "Let's break it down."
    question = _WHITESPACE.sub(" ", query)[:160]

    if mode == "socratic":
        return (
            f"{intro} Before answering{subject_part}{grade_part}, think about: \n"
            "- What is the problem really asking?\n"
            "- Which definition or formula applies?\n"
            "- Can you try a tiny example?\n"
            f'Now, what would be your first step for: "{question}"?'
        )
    if mode == "exam":
        return (
            f"Quick check{subject_part}{grade_part}:\n"
            "- Identify knowns/unknowns.\n"
            "- Choose the method.\n"
            "- Compute carefully and verify units.\n"
            f'Your turn: what method fits best for "{question}"?'
        )
    if mode == "motivational":
        return (
            f"{intro} You've got this! Try: \n"
            "1) Restate the question in your own words.\n"
            "2) List the facts you know.\n"
            "3) Take a small step and see what happens.\n"
            f'What\'s your first step for: "{question}"?'
        )
    return (
        f"{intro} Try it step-by-step: \n"
        f"1) Restate the problem{subject_part}{grade_part}.\n"
        "2) Pick the key idea/definition.\n"
        "3) Work a tiny example.\n"
        f'What would you attempt first for: "{question}"?'
    )
