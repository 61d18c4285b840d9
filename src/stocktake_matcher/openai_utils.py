from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from openai import OpenAI

from stocktake_matcher.errors import TransientProviderFailure

T = TypeVar("T")

# Calls that outlive their timeout keep running here and finish in the background.
_OPENAI_EXECUTOR = ThreadPoolExecutor(max_workers=16, thread_name_prefix="openai-call")


@dataclass(frozen=True)
class OpenAIConfig:
    chat_model: str
    vision_model: str
    embedding_model: str

    @classmethod
    def from_env(cls) -> "OpenAIConfig":
        chat_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        return cls(
            chat_model=chat_model,
            vision_model=os.getenv("OPENAI_VISION_MODEL", chat_model),
            embedding_model=os.getenv("OPENAI_EMBED_MODEL", "text-embedding-3-small"),
        )


def api_key_configured() -> bool:
    key = os.getenv("OPENAI_API_KEY")
    return bool(key) and key != "undefined"


def make_client() -> OpenAI:
    return OpenAI()


def run_with_timeout(operation: str, fn: Callable[[], T], timeout_seconds: float) -> T:
    safe_timeout = max(1.0, float(timeout_seconds))
    future = _OPENAI_EXECUTOR.submit(fn)
    try:
        return future.result(timeout=safe_timeout)
    except FutureTimeoutError as exc:
        future.cancel()
        raise TransientProviderFailure(f"{operation} timed out after {int(round(safe_timeout))}s.") from exc
    except Exception as exc:
        raise TransientProviderFailure(f"{operation} failed: {exc}") from exc


def text_embedding(client: OpenAI, text: str, model: str) -> list[float]:
    resp = client.embeddings.create(model=model, input=[text])
    return list(resp.data[0].embedding)


def summarize_image(client: OpenAI, image_url: str, instruction: str, model: str) -> str:
    """Ask a vision model for a short description of the product in a photo."""
    completion = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": instruction},
            {
                "role": "user",
                "content": [{"type": "image_url", "image_url": {"url": image_url, "detail": "low"}}],
            },
        ],
        max_tokens=80,
        temperature=0.2,
    )
    text = completion.choices[0].message.content or ""
    return text.strip()


def chat_json(
    client: OpenAI,
    system_prompt: str,
    user_content: list[dict[str, Any]],
    model: str,
) -> tuple[str, int | None]:
    """Return the raw JSON text of a structured completion and its token usage."""
    completion = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        response_format={"type": "json_object"},
        temperature=0.2,
    )
    raw = completion.choices[0].message.content or "{}"
    usage = getattr(completion, "usage", None)
    total_tokens = getattr(usage, "total_tokens", None) if usage is not None else None
    return raw, total_tokens
