from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class TermVector:
    frequencies: dict[str, int]
    norm: float


@dataclass(frozen=True)
class Document:
    id: str
    owner: str
    title: str
    content: str
    created_at: datetime


@dataclass(frozen=True)
class DocumentSummary:
    id: str
    title: str
    created_at: datetime


@dataclass(frozen=True)
class Passage:
    text: str
    score: float
    document_id: str
    chunk_index: int


@dataclass(frozen=True)
class SourceDocument:
    title: str
    source_path: str
    text: str
