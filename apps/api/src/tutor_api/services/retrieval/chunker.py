from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 800
DEFAULT_MAX_PASSAGES = 3000

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _split_long_paragraph(paragraph: str, *, max_chars: int) -> list[str]:
    passages: list[str] = []
    current = ""

    for sentence in _SENTENCE_END.split(paragraph):
        if not sentence:
            continue
        candidate = f"{current} {sentence}".strip()
        if len(candidate) > max_chars and current:
            passages.append(current)
            current = sentence.strip()
        else:
            current = candidate

    if current:
        passages.append(current)
    return passages


def chunk_text(
    text: str,
    *,
    max_chars: int = DEFAULT_MAX_CHARS,
    max_passages: int = DEFAULT_MAX_PASSAGES,
) -> list[str]:
    """Split ``text`` into ordered passages of at most ``max_chars`` characters.

    Paragraphs (separated by blank lines) are kept whole when they fit. Longer
    paragraphs are packed sentence by sentence; a single sentence longer than
    ``max_chars`` becomes its own passage. Output beyond ``max_passages`` is
    dropped.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    if max_passages <= 0:
        raise ValueError("max_passages must be > 0")

    passages: list[str] = []
    for raw_paragraph in _PARAGRAPH_BREAK.split(text):
        paragraph = raw_paragraph.strip()
        if not paragraph:
            continue
        if len(paragraph) <= max_chars:
            passages.append(paragraph)
        else:
            passages.extend(_split_long_paragraph(paragraph, max_chars=max_chars))

    if len(passages) > max_passages:
        logger.debug(
            "chunk cap reached passages=%d kept=%d", len(passages), max_passages
        )
        return passages[:max_passages]
    return passages
