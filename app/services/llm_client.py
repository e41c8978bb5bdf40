"""
Chat-completion client with provider fallback.

Anthropic's Messages API is tried first, then OpenAI chat completions (in JSON
mode for structured output). Callers get parsed JSON or stripped text plus the
provider name, or ``(None, None)`` when neither provider produced usable
output; they then build a template fallback or report the failure.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Thin httpx wrapper around the two supported chat providers.

    Limits concurrency to MAX_CONCURRENT simultaneous LLM calls. Provider
    errors (timeouts, connection failures, non-200 responses) are logged and
    reported as an empty completion so the next provider can be tried.
    """

    MAX_CONCURRENT: int = 4

    def __init__(
        self,
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.anthropic_api_key = anthropic_api_key or settings.ANTHROPIC_API_KEY
        self.openai_api_key = openai_api_key or settings.OPENAI_API_KEY
        self.timeout = httpx.Timeout(float(settings.LLM_TIMEOUT), connect=10.0)
        self._transport = transport
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT)

    @property
    def available(self) -> bool:
        return bool(self.anthropic_api_key or self.openai_api_key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4096,
    ) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """
        Ask each configured provider in turn for a JSON object.

        Returns ``(parsed_object, provider_name)`` or ``(None, None)``.
        """
        if self.anthropic_api_key:
            text = await self._call_anthropic(system_prompt, user_prompt, max_tokens)
            parsed = parse_json_object(text)
            if parsed is not None:
                return parsed, "anthropic"
            if text:
                logger.warning("Anthropic response was not valid JSON; trying OpenAI")

        if self.openai_api_key:
            text = await self._call_openai(system_prompt, user_prompt, max_tokens)
            parsed = parse_json_object(text)
            if parsed is not None:
                return parsed, "openai"

        return None, None

    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 512,
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Free-text completion with the same provider order as generate_json.

        Returns ``(stripped_text, provider_name)`` or ``(None, None)``.
        """
        if self.anthropic_api_key:
            text = (await self._call_anthropic(system_prompt, user_prompt, max_tokens) or "").strip()
            if text:
                return text, "anthropic"

        if self.openai_api_key:
            text = (
                await self._call_openai(system_prompt, user_prompt, max_tokens, json_mode=False) or ""
            ).strip()
            if text:
                return text, "openai"

        return None, None

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def _call_anthropic(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(
                        f"{settings.ANTHROPIC_BASE_URL.rstrip('/')}/messages",
                        headers={
                            "x-api-key": self.anthropic_api_key,
                            "anthropic-version": settings.ANTHROPIC_VERSION,
                            "content-type": "application/json",
                        },
                        json={
                            "model": settings.ANTHROPIC_MODEL,
                            "max_tokens": max_tokens,
                            "system": system_prompt,
                            "messages": [{"role": "user", "content": user_prompt}],
                        },
                    )
                if resp.status_code != 200:
                    logger.error("Anthropic returned HTTP %d: %s", resp.status_code, resp.text[:300])
                    return ""
                blocks = resp.json().get("content") or []
                return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            except httpx.TimeoutException:
                logger.error("Anthropic request timed out after %s s", settings.LLM_TIMEOUT)
                return ""
            except httpx.HTTPError as exc:
                logger.error("Anthropic connection error: %s", exc)
                return ""
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.error("Anthropic returned an unreadable body: %s", exc)
                return ""

    async def _call_openai(
        self, system_prompt: str, user_prompt: str, max_tokens: int, json_mode: bool = True
    ) -> str:
        payload: Dict[str, Any] = {
            "model": settings.OPENAI_CHAT_MODEL,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(
                        f"{settings.OPENAI_BASE_URL.rstrip('/')}/chat/completions",
                        headers={"Authorization": f"Bearer {self.openai_api_key}"},
                        json=payload,
                    )
                if resp.status_code != 200:
                    logger.error("OpenAI returned HTTP %d: %s", resp.status_code, resp.text[:300])
                    return ""
                choices = resp.json().get("choices") or []
                return choices[0]["message"]["content"] if choices else ""
            except httpx.TimeoutException:
                logger.error("OpenAI request timed out after %s s", settings.LLM_TIMEOUT)
                return ""
            except httpx.HTTPError as exc:
                logger.error("OpenAI connection error: %s", exc)
                return ""
            except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
                logger.error("OpenAI returned an unreadable body: %s", exc)
                return ""


# ---------------------------------------------------------------------------
# Robust JSON parsing
# ---------------------------------------------------------------------------

def parse_json_object(response: str) -> Optional[Dict[str, Any]]:
    """
    Pull a JSON object out of potentially messy model output.

    Handles markdown code fences, trailing commas and surrounding prose
    (the first balanced ``{...}`` block is used).
    """
    if not response:
        return None

    text = _strip_code_fences(response.strip())
    for candidate in (text, _fix_json_issues(text), _extract_object(text)):
        if not candidate:
            continue
        value = _try_json(candidate)
        if isinstance(value, dict):
            return value
        value = _try_json(_fix_json_issues(candidate))
        if isinstance(value, dict):
            return value

    logger.warning("parse_json_object: no JSON object found. Preview: %s", response[:300])
    return None


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _strip_code_fences(text: str) -> str:
    """Remove ```json / ``` delimiters that models often wrap output in."""
    text = re.sub(r"^```(?:json)?\s*\n?", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\n?```\s*$", "", text)
    return text.strip()


def _fix_json_issues(text: str) -> str:
    # Trailing commas before ] or }
    return re.sub(r",(\s*[}\]])", r"\1", text).strip()


def _extract_object(text: str) -> str:
    """First complete balanced ``{...}`` in *text*, or empty string."""
    start = text.find("{")
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escape_next = False
    for i, ch in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return ""
