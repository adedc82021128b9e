from dataclasses import asdict
from datetime import datetime
from functools import lru_cache
import logging
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from tutor_api.config import get_settings
from tutor_api.db import OfflineStore
from tutor_api.errors import StorageUnavailable
from tutor_api.llm import ChatCompletionClient, LLMClient, LLMClientError
from tutor_api.logging_config import configure_logging
from tutor_api.services.lesson_packs import LessonPackStore
from tutor_api.services.retrieval import LocalDocumentIndex, Passage
from tutor_api.services.retrieval.answer import (
    TutorLevel,
    TutorMode,
    TutorProfile,
    lightweight_qa,
    lightweight_summarize,
    local_tutor_reply,
    top_k_sentences,
)
from tutor_api.services.sync import FLUSH_QUEUE_TAG, OfflineGateway, OutboundRequest, build_gateway

logger = logging.getLogger(__name__)

app = FastAPI(title="Tutor Offline Harness API", version="0.1.0")


class DocumentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner: str = Field(min_length=1)
    title: str = Field(min_length=1)
    content: str


class AskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=1)
    k: int = Field(default=3, ge=1, le=20)
    mode: TutorMode = "friendly"
    level: TutorLevel = "normal"
    subject: str | None = None
    grade: str | int | None = None


class SummarizeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(min_length=1)
    max_sentences: int = Field(default=4, ge=1, le=20)
    query: str | None = None


class LessonCheck(BaseModel):
    question: str
    answer: str


class LessonStep(BaseModel):
    title: str
    content: str
    check: LessonCheck | None = None


class OfflineLesson(BaseModel):
    title: str
    overview: str | None = None
    steps: list[LessonStep] = Field(default_factory=list)
    summary: str | None = None
    script: str | None = None
    srt: str | None = None


class LessonPackCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    topic: str = Field(min_length=1)
    grade: str | int | None = None
    lesson: OfflineLesson


class SyncMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(min_length=1)
    userId: str | None = None


@lru_cache
def get_store() -> OfflineStore:
    settings = get_settings()
    store = OfflineStore(settings.database_url, echo=settings.db_echo)
    try:
        store.open()
    except StorageUnavailable as exc:
        logger.error("starting without offline store error=%s", exc)
    return store


@lru_cache
def get_gateway() -> OfflineGateway:
    return build_gateway(get_store(), get_settings())


def get_index() -> LocalDocumentIndex:
    settings = get_settings()
    return LocalDocumentIndex(
        get_store(),
        max_chars=settings.chunk_max_chars,
        max_passages=settings.chunk_max_passages,
    )


def get_lesson_packs() -> LessonPackStore:
    return LessonPackStore(get_store())


def get_llm_client() -> LLMClient:
    settings = get_settings()
    return ChatCompletionClient(
        base_url=settings.llm_base_url,
        default_model=settings.llm_model,
        fallback_model=settings.llm_fallback_model,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
    )


@app.on_event("startup")
def startup() -> None:
    get_gateway().activate()


@app.on_event("shutdown")
def shutdown() -> None:
    if get_gateway.cache_info().currsize:
        get_gateway().close()
    if get_store.cache_info().currsize:
        get_store().close()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _passage_payload(passage: Passage) -> dict[str, Any]:
    return {
        "document_id": passage.document_id,
        "chunk_index": passage.chunk_index,
        "score": round(passage.score, 6),
        "text": passage.text,
    }


def _storage_error(exc: StorageUnavailable) -> HTTPException:
    return HTTPException(status_code=503, detail=f"offline store unavailable: {exc}")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/documents", status_code=201)
def add_document(
    request: DocumentCreateRequest,
    index: Annotated[LocalDocumentIndex, Depends(get_index)],
) -> dict[str, Any]:
    try:
        document = index.add_document(request.owner, request.title, request.content)
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc

    return {
        "id": document.id,
        "owner": document.owner,
        "title": document.title,
        "created_at": _to_iso(document.created_at),
    }


@app.get("/documents")
def list_documents(
    index: Annotated[LocalDocumentIndex, Depends(get_index)],
) -> list[dict[str, Any]]:
    try:
        documents = index.list_documents()
    except StorageUnavailable as exc:
        logger.warning("document listing degraded to empty error=%s", exc)
        return []

    return [
        {"id": document.id, "title": document.title, "created_at": _to_iso(document.created_at)}
        for document in documents
    ]


@app.get("/documents/search")
def search_documents(
    q: str,
    index: Annotated[LocalDocumentIndex, Depends(get_index)],
    k: int | None = Query(default=None),
) -> list[dict[str, Any]]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    top_n = max(1, min(k or get_settings().query_top_n, 50))
    try:
        passages = index.query(q, top_n=top_n)
    except StorageUnavailable as exc:
        logger.warning("document search degraded to empty error=%s", exc)
        return []

    return [_passage_payload(passage) for passage in passages]


@app.get("/documents/{document_id}")
def get_document(
    document_id: str,
    index: Annotated[LocalDocumentIndex, Depends(get_index)],
) -> dict[str, Any]:
    try:
        document = index.get_document(document_id)
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc

    if document is None:
        raise HTTPException(status_code=404, detail="document not found")
    return {
        "id": document.id,
        "owner": document.owner,
        "title": document.title,
        "content": document.content,
        "created_at": _to_iso(document.created_at),
    }


@app.delete("/documents/{document_id}")
def delete_document(
    document_id: str,
    index: Annotated[LocalDocumentIndex, Depends(get_index)],
) -> dict[str, Any]:
    try:
        deleted = index.delete_document(document_id)
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc

    if not deleted:
        raise HTTPException(status_code=404, detail="document not found")
    return {"id": document_id, "deleted": True}


@app.post("/ask")
def ask(
    request: AskRequest,
    index: Annotated[LocalDocumentIndex, Depends(get_index)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> dict[str, Any]:
    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="question must not be empty")

    settings = get_settings()
    profile = TutorProfile(
        mode=request.mode,
        level=request.level,
        subject=request.subject,
        grade=request.grade,
    )

    try:
        hits = index.query(question, top_n=request.k)
    except StorageUnavailable as exc:
        logger.warning("ask retrieval degraded to empty error=%s", exc)
        hits = []

    local_context = "\n\n".join(hit.text for hit in hits)
    remote_context = local_context or "No relevant notes found in the local index."

    answer: str | None = None
    model: str | None = None
    used_fallback = False
    if not settings.ask_prefer_local:
        try:
            chat_result = llm_client.generate_answer(
                question=question,
                context=remote_context,
                profile=profile,
            )
        except LLMClientError as exc:
            logger.info("remote answer unavailable; answering locally error=%s", exc)
        else:
            answer = chat_result.answer
            model = chat_result.model
            used_fallback = chat_result.used_fallback

    used_model = answer is not None
    if answer is None:
        if local_context:
            answer = lightweight_qa(question, local_context)
        else:
            answer = local_tutor_reply(
                question,
                mode=profile.mode,
                level=profile.level,
                subject=profile.subject,
                grade=profile.grade,
            )

    return {
        "answer": answer,
        "sources": [_passage_payload(hit) for hit in hits],
        "meta": {
            "provider": "remote" if used_model else "local",
            "model": model,
            "used_model": used_model,
            "used_fallback": used_fallback,
            "retrieval_k": request.k,
            "retrieved_count": len(hits),
        },
    }


@app.post("/summarize")
def summarize(request: SummarizeRequest) -> dict[str, Any]:
    if request.query and request.query.strip():
        summary = " ".join(
            top_k_sentences(request.text, request.query, k=request.max_sentences)
        )
    else:
        summary = lightweight_summarize(request.text, max_sentences=request.max_sentences)
    return {
        "summary": summary,
        "used_model": False,
    }


@app.post("/lesson-packs", status_code=201)
def save_lesson_pack(
    request: LessonPackCreateRequest,
    packs: Annotated[LessonPackStore, Depends(get_lesson_packs)],
) -> dict[str, Any]:
    try:
        pack = packs.save(
            topic=request.topic,
            grade=request.grade,
            lesson=request.lesson.model_dump(),
        )
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc

    return {
        "id": pack.id,
        "topic": pack.topic,
        "grade": pack.grade,
        "created_at": _to_iso(pack.created_at),
    }


@app.get("/lesson-packs")
def list_lesson_packs(
    packs: Annotated[LessonPackStore, Depends(get_lesson_packs)],
) -> list[dict[str, Any]]:
    try:
        summaries = packs.list_packs()
    except StorageUnavailable as exc:
        logger.warning("lesson pack listing degraded to empty error=%s", exc)
        return []

    return [
        {
            "id": summary.id,
            "topic": summary.topic,
            "grade": summary.grade,
            "created_at": _to_iso(summary.created_at),
        }
        for summary in summaries
    ]


@app.get("/lesson-packs/{pack_id}")
def get_lesson_pack(
    pack_id: str,
    packs: Annotated[LessonPackStore, Depends(get_lesson_packs)],
) -> dict[str, Any]:
    try:
        pack = packs.get(pack_id)
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc

    if pack is None:
        raise HTTPException(status_code=404, detail="lesson pack not found")
    return {
        "id": pack.id,
        "topic": pack.topic,
        "grade": pack.grade,
        "created_at": _to_iso(pack.created_at),
        "lesson": pack.lesson,
    }


@app.delete("/lesson-packs/{pack_id}")
def delete_lesson_pack(
    pack_id: str,
    packs: Annotated[LessonPackStore, Depends(get_lesson_packs)],
) -> dict[str, Any]:
    try:
        deleted = packs.delete(pack_id)
    except StorageUnavailable as exc:
        raise _storage_error(exc) from exc

    if not deleted:
        raise HTTPException(status_code=404, detail="lesson pack not found")
    return {"id": pack_id, "deleted": True}


@app.get("/sync/queue")
def queue_status(
    gateway: Annotated[OfflineGateway, Depends(get_gateway)],
) -> dict[str, Any]:
    return {"count": gateway.queue_size(), "replaying": gateway.replay.running}


@app.post("/sync/messages")
def post_sync_message(
    message: SyncMessage,
    gateway: Annotated[OfflineGateway, Depends(get_gateway)],
) -> dict[str, Any]:
    reply = gateway.handle_message(message.model_dump(exclude_none=True))
    if reply is None:
        return {"type": "IGNORED"}
    return reply


@app.post("/sync/events/{tag}")
def post_sync_event(
    tag: str,
    gateway: Annotated[OfflineGateway, Depends(get_gateway)],
) -> JSONResponse:
    if tag != FLUSH_QUEUE_TAG:
        raise HTTPException(status_code=404, detail=f"unknown sync tag: {tag}")

    summary = gateway.handle_sync(tag)
    if summary is None:
        return JSONResponse(status_code=202, content={"tag": tag, "coalesced": True})
    return JSONResponse(
        status_code=202,
        content={"tag": tag, "coalesced": False, **asdict(summary)},
    )


async def _proxy(request: Request, gateway: OfflineGateway) -> Response:
    body = await request.body()
    outbound = OutboundRequest(
        method=request.method,
        url=gateway.resolve_url(request.url.path, request.url.query),
        headers=dict(request.headers),
        body=body or None,
    )
    result = await run_in_threadpool(gateway.handle, outbound)

    headers = dict(result.response.headers)
    headers["x-offline-source"] = result.source
    return Response(
        content=result.response.content,
        status_code=result.response.status_code,
        headers=headers,
    )


@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy_api(
    path: str,
    request: Request,
    gateway: Annotated[OfflineGateway, Depends(get_gateway)],
) -> Response:
    del path
    return await _proxy(request, gateway)


@app.get("/_next/{path:path}")
async def proxy_static(
    path: str,
    request: Request,
    gateway: Annotated[OfflineGateway, Depends(get_gateway)],
) -> Response:
    del path
    return await _proxy(request, gateway)


def run() -> None:
    import uvicorn

    configure_logging(get_settings().log_level)
    uvicorn.run("tutor_api.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
