from __future__ import annotations

import argparse
from pathlib import Path
import sys

from tutor_api.config import get_settings
from tutor_api.db import OfflineStore
from tutor_api.logging_config import configure_logging
from tutor_api.services.retrieval import LocalDocumentIndex
from tutor_api.services.retrieval.loader import load_documents


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="tutor-index",
        description="Add study notes from a directory to the local document index",
    )
    parser.add_argument(
        "--source-dir",
        required=True,
        help="Source directory containing .txt/.md documents",
    )
    parser.add_argument(
        "--owner",
        required=True,
        help="Owner recorded on every added document",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy URL of the offline store",
    )
    return parser


def index_directory(*, source_dir: Path, owner: str, store: OfflineStore) -> dict[str, int]:
    settings = get_settings()
    index = LocalDocumentIndex(
        store,
        max_chars=settings.chunk_max_chars,
        max_passages=settings.chunk_max_passages,
    )

    documents = 0
    chunks = 0
    for source in load_documents(source_dir):
        document = index.add_document(owner, source.title, source.text)
        documents += 1
        chunks += index.chunk_count(document.id)

    return {"documents": documents, "chunks": chunks}


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging(get_settings().log_level)

    try:
        with OfflineStore(args.database_url) as store:
            metrics = index_directory(
                source_dir=Path(args.source_dir),
                owner=args.owner,
                store=store,
            )
    except Exception as exc:
        print(f"[tutor-index] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        "[tutor-index] completed "
        f"documents={metrics['documents']} "
        f"chunks={metrics['chunks']}",
        flush=True,
    )


if __name__ == "__main__":
    main()
