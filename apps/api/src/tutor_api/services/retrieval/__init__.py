from tutor_api.services.retrieval.chunker import chunk_text
from tutor_api.services.retrieval.index import LocalDocumentIndex
from tutor_api.services.retrieval.types import Document, DocumentSummary, Passage, TermVector
from tutor_api.services.retrieval.vectorizer import cosine_similarity, tokenize, vectorize

__all__ = [
    "Document",
    "DocumentSummary",
    "LocalDocumentIndex",
    "Passage",
    "TermVector",
    "chunk_text",
    "cosine_similarity",
    "tokenize",
    "vectorize",
]
