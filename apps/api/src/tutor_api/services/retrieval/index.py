from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
import logging
import uuid

from sqlalchemy import delete, func, select

from tutor_api.db import OfflineStore
from tutor_api.models import ChunkRecord, DocumentRecord
from tutor_api.services.retrieval.chunker import (
    DEFAULT_MAX_CHARS,
    DEFAULT_MAX_PASSAGES,
    chunk_text,
)
from tutor_api.services.retrieval.types import (
    Document,
    DocumentSummary,
    Passage,
    TermVector,
)
from tutor_api.services.retrieval.vectorizer import cosine_similarity, tokenize, vectorize

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_document(record: DocumentRecord) -> Document:
    return Document(
        id=record.id,
        owner=record.owner,
        title=record.title,
        content=record.content,
        created_at=record.created_at,
    )


class LocalDocumentIndex:
    """Document store with term-frequency cosine retrieval over chunks."""

    def __init__(
        self,
        store: OfflineStore,
        *,
        max_chars: int = DEFAULT_MAX_CHARS,
        max_passages: int = DEFAULT_MAX_PASSAGES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._max_chars = max_chars
        self._max_passages = max_passages
        self._clock = clock

    def add_document(self, owner: str, title: str, content: str) -> Document:
        document = DocumentRecord(
            id=str(uuid.uuid4()),
            owner=owner,
            title=title,
            content=content,
            created_at=self._clock(),
        )

        chunks: list[ChunkRecord] = []
        passages = chunk_text(content, max_chars=self._max_chars, max_passages=self._max_passages)
        for index, passage in enumerate(passages):
            tokens = tokenize(passage)
            vector = vectorize(tokens)
            chunks.append(
                ChunkRecord(
                    id=str(uuid.uuid4()),
                    document_id=document.id,
                    chunk_index=index,
                    text=passage,
                    term_frequencies=vector.frequencies,
                    norm=vector.norm,
                    token_count=len(tokens),
                )
            )

        with self._store.begin() as session:
            session.add(document)
            session.add_all(chunks)

        logger.info(
            "document indexed document_id=%s owner=%s chunks=%d",
            document.id,
            owner,
            len(chunks),
        )
        return _to_document(document)

    def get_document(self, document_id: str) -> Document | None:
        with self._store.session() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                return None
            return _to_document(record)

    def list_documents(self) -> list[DocumentSummary]:
        with self._store.session() as session:
            rows = session.execute(
                select(DocumentRecord.id, DocumentRecord.title, DocumentRecord.created_at)
                .order_by(DocumentRecord.created_at.desc())
            ).all()

        return [
            DocumentSummary(id=document_id, title=title, created_at=created_at)
            for document_id, title, created_at in rows
        ]

    def delete_document(self, document_id: str) -> bool:
        with self._store.begin() as session:
            deleted_documents = session.execute(
                delete(DocumentRecord).where(DocumentRecord.id == document_id)
            ).rowcount
            deleted_chunks = session.execute(
                delete(ChunkRecord).where(ChunkRecord.document_id == document_id)
            ).rowcount

        logger.info(
            "document deleted document_id=%s chunks=%d", document_id, deleted_chunks
        )
        return bool(deleted_documents)

    def chunk_count(self, document_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(ChunkRecord)
        if document_id is not None:
            stmt = stmt.where(ChunkRecord.document_id == document_id)
        with self._store.session() as session:
            return int(session.scalar(stmt) or 0)

    def query(self, text: str, top_n: int = DEFAULT_TOP_N) -> list[Passage]:
        query_vector = vectorize(tokenize(text))
        if top_n <= 0:
            return []

        with self._store.session() as session:
            rows = session.execute(
                select(
                    ChunkRecord.document_id,
                    ChunkRecord.chunk_index,
                    ChunkRecord.text,
                    ChunkRecord.term_frequencies,
                    ChunkRecord.norm,
                )
            ).all()

        passages: list[Passage] = []
        for document_id, chunk_index, chunk_text_value, frequencies, norm in rows:
            score = cosine_similarity(
                query_vector,
                TermVector(frequencies=frequencies, norm=norm),
            )
            if score <= 0:
                continue
            passages.append(
                Passage(
                    text=chunk_text_value,
                    score=score,
                    document_id=document_id,
                    chunk_index=chunk_index,
                )
            )

        passages.sort(key=lambda passage: passage.score, reverse=True)
        return passages[:top_n]
