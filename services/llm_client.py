from __future__ import annotations

import json
import re
import time
from typing import Any, Dict, List, Optional

import openai

from config.llm_routes import ROUTES
from config.settings import Settings, get_settings
from pipelines.errors import (
    ClassificationParseError,
    ErrorKind,
    ExternalCallError,
    PermanentExternalError,
    TransientExternalError,
)
from utils.llm_logger import log_call, sha256_text


def _extract_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort JSON object extraction from a model reply."""
    if not text:
        return None
    # Try raw parse first
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass
    # Try fenced code block
    m = re.search(r"```(?:json)?\s*\n([\s\S]*?)\n```", text)
    if m:
        try:
            parsed = json.loads(m.group(1))
            if isinstance(parsed, dict):
                return parsed
        except ValueError:
            pass
    # Try curly braces slice
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(text[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except ValueError:
            pass
    return None


def classify_openai_error(exc: Exception) -> ExternalCallError:
    """Map an OpenAI SDK exception onto the pipeline's transient/permanent split."""
    status = getattr(exc, "status_code", None)
    if isinstance(exc, openai.RateLimitError):
        return TransientExternalError(ErrorKind.RATE_LIMITED, str(exc), status)
    if isinstance(exc, openai.APITimeoutError):
        return TransientExternalError(ErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, openai.APIConnectionError):
        return TransientExternalError(ErrorKind.NETWORK, str(exc))
    if isinstance(exc, openai.InternalServerError):
        return TransientExternalError(ErrorKind.PROVIDER_UNAVAILABLE, str(exc), status)
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return PermanentExternalError(ErrorKind.AUTH_ERROR, str(exc), status)
    if isinstance(exc, openai.NotFoundError):
        return PermanentExternalError(ErrorKind.NOT_FOUND, str(exc), status)
    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return PermanentExternalError(ErrorKind.INVALID_REQUEST, str(exc), status)
    if isinstance(exc, openai.APIStatusError) and status is not None and status >= 500:
        return TransientExternalError(ErrorKind.PROVIDER_UNAVAILABLE, str(exc), status)
    return PermanentExternalError(ErrorKind.UNKNOWN, str(exc), status)


class LLMClient:
    """Minimal wrapper to centralize per-use-case routing, error mapping and logging."""

    def __init__(self, settings: Optional[Settings] = None, client: Any = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    def _openai(self) -> Any:
        if self._client is None:
            self._client = openai.OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=float(self.settings.http_timeout_seconds) * 3,
                max_retries=0,
            )
        return self._client

    def chat(
        self,
        *,
        use_case: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        prompt_name: Optional[str] = None,
        record_id: Optional[int] = None,
        json_mode: bool = False,
    ) -> Any:
        route = ROUTES.get(use_case, {})
        provider = route.get("provider", "openai")
        model = route.get("model") or self.settings.openai_model or "gpt-4o-mini"
        op = route.get("operation", "chat")
        temp = temperature if temperature is not None else route.get("temperature")

        if provider != "openai":
            raise NotImplementedError(f"Provider not implemented: {provider}")

        kwargs: Dict[str, Any] = {"model": model, "messages": messages}
        # Only pass temperature if explicitly provided (some models only accept default)
        if temp is not None:
            kwargs["temperature"] = temp
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        prompt_hash = sha256_text("\n".join(m.get("content", "") for m in messages))
        t0 = time.time()
        try:
            resp = self._openai().chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            err = classify_openai_error(exc)
            log_call(
                caller=f"llm_client.chat:{use_case}",
                provider=provider,
                model=model,
                operation=op,
                record_id=record_id,
                prompt_hash=prompt_hash,
                duration_ms=int((time.time() - t0) * 1000),
                status="error",
                error=str(exc),
                error_kind=err.kind.value,
                extras={"prompt_name": prompt_name} if prompt_name else None,
            )
            raise err from exc
        dt_ms = int((time.time() - t0) * 1000)

        usage_obj = None
        usage = getattr(resp, "usage", None)
        if usage:
            usage_obj = {
                "prompt_tokens": getattr(usage, "prompt_tokens", None),
                "completion_tokens": getattr(usage, "completion_tokens", None),
                "total_tokens": getattr(usage, "total_tokens", None),
            }

        log_call(
            caller=f"llm_client.chat:{use_case}",
            provider=provider,
            model=model,
            operation=op,
            record_id=record_id,
            prompt_hash=prompt_hash,
            duration_ms=dt_ms,
            status="ok",
            usage=usage_obj,
            extras={"prompt_name": prompt_name} if prompt_name else None,
        )
        return resp

    def classify(self, *, use_case: str, system_prompt: str, user_prompt: str, record_id: Optional[int] = None) -> Dict[str, Any]:
        """Run one classification prompt and return the parsed JSON object.

        Raises ClassificationParseError when the reply is not a JSON object, and
        Transient/PermanentExternalError when the provider call itself fails.
        """
        resp = self.chat(
            use_case=use_case,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            prompt_name=use_case,
            record_id=record_id,
            json_mode=True,
        )
        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError):
            content = None
        parsed = _extract_json(content)
        if parsed is None:
            raise ClassificationParseError(f"Unparseable {use_case} reply", raw=content)
        return parsed
