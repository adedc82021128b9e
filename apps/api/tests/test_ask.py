import pytest
from fastapi.testclient import TestClient

from tutor_api.config import get_settings
from tutor_api.llm import ChatResult, LLMClientError
from tutor_api.main import app, get_llm_client
from tutor_api.services.retrieval.answer import TutorProfile


class FakeLLMClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.profiles: list[TutorProfile | None] = []

    def generate_answer(
        self, *, question: str, context: str, profile: TutorProfile | None = None
    ) -> ChatResult:
        self.calls.append((question, context))
        self.profiles.append(profile)
        return ChatResult(answer="mocked answer", model="fake-model", used_fallback=True)


class FailingLLMClient:
    def generate_answer(
        self, *, question: str, context: str, profile: TutorProfile | None = None
    ) -> ChatResult:
        raise LLMClientError("simulated failure")


def _add_geography(client: TestClient) -> None:
    response = client.post(
        "/documents",
        json={"owner": "ada", "title": "Geography", "content": "Paris is the capital of France."},
    )
    assert response.status_code == 201


def test_ask_uses_remote_model_with_local_context(client: TestClient) -> None:
    _add_geography(client)
    fake_client = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_client

    try:
        response = client.post("/ask", json={"question": "What is the capital of France?", "k": 2})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == "mocked answer"
    assert payload["sources"][0]["text"] == "Paris is the capital of France."
    assert {"document_id", "chunk_index", "score", "text"} == set(payload["sources"][0])
    assert payload["meta"] == {
        "provider": "remote",
        "model": "fake-model",
        "used_model": True,
        "used_fallback": True,
        "retrieval_k": 2,
        "retrieved_count": 1,
    }
    assert fake_client.calls == [("What is the capital of France?", "Paris is the capital of France.")]


def test_ask_falls_back_to_local_answer_when_model_fails(client: TestClient) -> None:
    _add_geography(client)
    app.dependency_overrides[get_llm_client] = lambda: FailingLLMClient()

    try:
        response = client.post("/ask", json={"question": "What is the capital of France?"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == "Paris is the capital of France."
    assert payload["meta"]["provider"] == "local"
    assert payload["meta"]["used_model"] is False
    assert payload["meta"]["model"] is None


def test_ask_without_notes_returns_tutor_prompt(client: TestClient) -> None:
    app.dependency_overrides[get_llm_client] = lambda: FailingLLMClient()

    try:
        response = client.post("/ask", json={"question": "How do I add fractions?"})
    finally:
        app.dependency_overrides.clear()

    payload = response.json()
    assert payload["sources"] == []
    assert payload["meta"]["retrieved_count"] == 0
    assert payload["answer"].startswith("Let's break it down.")
    assert '"How do I add fractions?"' in payload["answer"]


def test_ask_prefer_local_skips_remote_model(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ASK_PREFER_LOCAL", "true")
    get_settings.cache_clear()
    _add_geography(client)
    fake_client = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_client

    try:
        response = client.post("/ask", json={"question": "capital of France"})
    finally:
        app.dependency_overrides.clear()

    assert response.json()["answer"] == "Paris is the capital of France."
    assert fake_client.calls == []


def test_ask_requires_question_field(client: TestClient) -> None:
    assert client.post("/ask", json={"q": "missing required field"}).status_code == 422


def test_ask_rejects_blank_question(client: TestClient) -> None:
    assert client.post("/ask", json={"question": "   "}).status_code == 400


def test_ask_validates_k_bounds(client: TestClient) -> None:
    assert client.post("/ask", json={"question": "hello", "k": 0}).status_code == 422


def test_summarize_endpoint_is_extractive(client: TestClient) -> None:
    text = "Cats sleep a lot. Cats hunt mice. Dogs bark. Cats purr when happy."

    response = client.post("/summarize", json={"text": text, "max_sentences": 2})

    assert response.status_code == 200
    payload = response.json()
    assert payload["used_model"] is False
    assert payload["summary"] == "Cats sleep a lot. Cats purr when happy."


def test_ask_passes_tutor_profile_to_remote_model(client: TestClient) -> None:
    fake_client = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_client

    try:
        response = client.post(
            "/ask",
            json={
                "question": "Why do leaves change colour?",
                "mode": "socratic",
                "level": "eli5",
                "subject": "biology",
                "grade": 5,
            },
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert fake_client.profiles == [
        TutorProfile(mode="socratic", level="eli5", subject="biology", grade=5)
    ]


def test_ask_local_reply_follows_tutor_profile(client: TestClient) -> None:
    app.dependency_overrides[get_llm_client] = lambda: FailingLLMClient()

    try:
        response = client.post(
            "/ask",
            json={"question": "Solve 3x = 9", "mode": "exam", "subject": "algebra", "grade": "8"},
        )
    finally:
        app.dependency_overrides.clear()

    answer = response.json()["answer"]
    assert answer.startswith("Quick check in algebra for grade 8:")
    assert '"Solve 3x = 9"' in answer


def test_ask_rejects_unknown_mode(client: TestClient) -> None:
    response = client.post("/ask", json={"question": "hello", "mode": "sarcastic"})

    assert response.status_code == 422


def test_summarize_with_query_returns_most_relevant_sentences(client: TestClient) -> None:
    text = "The sun is hot. Ice is cold. Snow is cold and white."

    response = client.post(
        "/summarize", json={"text": text, "max_sentences": 1, "query": "cold ice"}
    )

    assert response.status_code == 200
    assert response.json()["summary"] == "Ice is cold."
