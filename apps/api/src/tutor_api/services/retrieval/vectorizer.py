from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
import math
import re

from tutor_api.services.retrieval.types import TermVector

# Unicode letters and digits; underscore is a word char for `\w` but not a token char.
_TOKEN_PATTERN = re.compile(r"[^\W_]+")


def tokenize(text: str) -> list[str]:
    return _TOKEN_PATTERN.findall(text.lower())


def vectorize(tokens: Iterable[str]) -> TermVector:
    frequencies = dict(Counter(tokens))
    norm = math.sqrt(sum(count * count for count in frequencies.values()))
    return TermVector(frequencies=frequencies, norm=norm)


def vectorize_text(text: str) -> TermVector:
    return vectorize(tokenize(text))


def cosine_similarity(a: TermVector, b: TermVector) -> float:
    if not a.norm or not b.norm:
        return 0.0

    if len(a.frequencies) <= len(b.frequencies):
        smaller, other = a.frequencies, b.frequencies
    else:
        smaller, other = b.frequencies, a.frequencies

    dot = sum(count * other[token] for token, count in smaller.items() if token in other)
    return max(-1.0, min(1.0, dot / (a.norm * b.norm)))
