from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from tutor_api.services.retrieval.answer import TutorProfile

PERSONALITY_PROMPTS = {
    "friendly": "Be warm and encouraging, with a conversational tone.",
    "socratic": "Guide the student with questions so they discover the answer themselves.",
    "exam": "Be direct and test-oriented; stress accuracy and method.",
    "motivational": "Use positive reinforcement and help the student build confidence.",
}

LEVEL_PROMPTS = {
    "eli5": "Explain it as simply as you would to a young child.",
    "normal": "Pitch the explanation at the student's level.",
    "expert": "Go into technical depth and use precise terminology.",
}

NOTES_GUIDANCE = (
    "Answer from the student's notes when they are relevant. "
    "If the notes are insufficient, say so briefly."
)


class LLMClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    def generate_answer(
        self,
        *,
        question: str,
        context: str,
        profile: TutorProfile | None = None,
    ) -> ChatResult: ...


def build_system_prompt(profile: TutorProfile) -> str:
    parts = [
        "You are a patient AI tutor.",
        PERSONALITY_PROMPTS.get(profile.mode, PERSONALITY_PROMPTS["friendly"]),
        LEVEL_PROMPTS.get(profile.level, LEVEL_PROMPTS["normal"]),
    ]
    if profile.subject:
        parts.append(f"Current subject: {profile.subject}.")
    if profile.grade:
        parts.append(f"The student is in grade {profile.grade}.")
    parts.append(NOTES_GUIDANCE)
    return " ".join(parts)


def build_messages(*, question: str, context: str, profile: TutorProfile) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(profile)},
        {"role": "user", "content": f"Notes:\n{context}\n\nQuestion: {question}"},
    ]


def _extract_content(payload: Any) -> str:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices:
        raise ValueError("Invalid chat completion payload: missing choices")

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise ValueError("Invalid chat completion payload: missing assistant content")
    return content.strip()


class ChatCompletionClient:
    """Tutor chat over an OpenAI-compatible ``/chat/completions`` endpoint.

    The default model is tried first; a distinct fallback model gets one retry
    when the first call fails at the HTTP level or returns an unusable payload.
    """

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        max_tokens: int = 500,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._models = [default_model]
        if fallback_model and fallback_model != default_model:
            self._models.append(fallback_model)
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._timeout_seconds = timeout_seconds
        self._max_tokens = max_tokens

    def generate_answer(
        self,
        *,
        question: str,
        context: str,
        profile: TutorProfile | None = None,
    ) -> ChatResult:
        messages = build_messages(
            question=question,
            context=context,
            profile=profile or TutorProfile(),
        )

        last_error: Exception | None = None
        for position, model in enumerate(self._models):
            try:
                answer = self._complete(model, messages)
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                continue
            return ChatResult(answer=answer, model=model, used_fallback=position > 0)

        raise LLMClientError(str(last_error)) from last_error

    def _complete(self, model: str, messages: list[dict[str, str]]) -> str:
        response = httpx.post(
            self._url,
            json={
                "model": model,
                "messages": messages,
                "max_tokens": self._max_tokens,
                "temperature": 0.3,
            },
            headers=self._headers,
            timeout=self._timeout_seconds,
        )
        response.raise_for_status()
        return _extract_content(response.json())
