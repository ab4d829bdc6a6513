from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httpx

from ..config import get_settings


class LLMError(RuntimeError):
    """Raised when the chat-completion API returns an error response."""


def _headers(*, api_key: Optional[str] = None, require_key: bool = True) -> Dict[str, str]:
    settings = get_settings()
    key = (api_key or settings.llm_api_key or "").strip()
    if not key and require_key:
        raise LLMError("Missing LLM API key")

    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if key:
        headers["Authorization"] = f"Bearer {key}"

    return headers


def _build_messages(messages: List[Dict[str, str]], system: Optional[str]) -> List[Dict[str, str]]:
    if system:
        return [{"role": "system", "content": system}, *messages]
    return messages


def _handle_response_error(exc: httpx.HTTPStatusError) -> None:
    response = exc.response
    detail: str
    try:
        payload = response.json()
        detail = payload.get("error") or payload.get("message") or json.dumps(payload)
    except Exception:
        detail = response.text
    raise LLMError(f"LLM request failed ({response.status_code}): {detail}") from exc


def extract_message_content(response: Dict[str, Any]) -> str:
    """Pull the first choice's text out of a chat-completion payload."""
    choices = response.get("choices") or []
    if not choices:
        raise LLMError("LLM response missing choices")
    message = choices[0].get("message") or {}
    return message.get("content") or ""


async def request_chat_completion(
    *,
    model: str,
    messages: List[Dict[str, str]],
    system: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    max_tokens: Optional[int] = None,
    require_key: bool = True,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """Request a chat completion and return the raw JSON payload."""

    settings = get_settings()
    payload: Dict[str, object] = {
        "model": model,
        "messages": _build_messages(messages, system),
        "stream": False,
    }
    if max_tokens:
        payload["max_tokens"] = max_tokens

    root = base_url or settings.llm_base_url
    url = f"{root.rstrip('/')}/chat/completions"

    async with httpx.AsyncClient() as client:
        try:
            response = await client.post(
                url,
                headers=_headers(api_key=api_key, require_key=require_key),
                json=payload,
                timeout=timeout or settings.request_timeout_seconds,
            )
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                _handle_response_error(exc)
            return response.json()
        except httpx.HTTPStatusError as exc:  # pragma: no cover - handled above
            _handle_response_error(exc)
        except httpx.HTTPError as exc:
            raise LLMError(f"LLM request failed: {exc}") from exc

    raise LLMError("LLM request failed: unknown error")


__all__ = ["LLMError", "extract_message_content", "request_chat_completion"]
