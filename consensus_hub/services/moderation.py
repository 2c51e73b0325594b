"""Response moderation.

Asks an OpenAI-compatible chat model whether an answer contains offensive or
discriminatory language. A "not permitted" verdict blocks the submission
before anything is stored.

When the moderation service itself fails (no key, transport error, bad
payload) the outcome depends on ModerationConfig.fail_open: by default the
submission is refused (ModerationUnavailableError); with fail_open the
content is let through and a warning is logged.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import ModerationUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class ModerationConfig:
    """Connection settings and failure policy for moderation."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 15.0
    fail_open: bool = False

    @classmethod
    def from_settings(cls, settings) -> "ModerationConfig":
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.analysis_base_url,
            model=settings.moderation_model,
            timeout_seconds=settings.moderation_timeout_seconds,
            fail_open=settings.moderation_fail_open,
        )


@dataclass
class ModerationResult:
    """Verdict on a single answer."""
    permitted: bool
    reason: str
    user_message: str = ""


MODERATION_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["original_text", "status", "reason", "user_message"],
    "properties": {
        "original_text": {"type": "string"},
        "status": {"type": "string", "enum": ["permitted", "not_permitted"]},
        "reason": {"type": "string"},
        "user_message": {"type": "string"},
    },
}


class ModerationService:
    """Decides whether a response may be stored."""

    SYSTEM_PROMPT = (
        "You are an Ethical Moderation and Response Filter Agent. Detect if the "
        "message contains offensive or discriminatory language and respond strictly "
        "in JSON using the schema."
    )

    def __init__(
        self,
        config: ModerationConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._http_client = http_client

    async def check(self, question: str, answer: str) -> ModerationResult:
        """
        Moderate an answer given the question it responds to.

        Raises:
            ModerationUnavailableError: moderation failed and fail_open is off
        """
        try:
            return await self._moderate(question, answer)
        except ModerationUnavailableError as e:
            if not self._config.fail_open:
                raise
            logger.warning(f"Moderation unavailable, allowing content through: {e}")
            return ModerationResult(permitted=True, reason="Moderation unavailable")

    async def _moderate(self, question: str, answer: str) -> ModerationResult:
        if not self._config.api_key:
            raise ModerationUnavailableError("Moderation API key not configured")

        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": f"Question: {question}\nAnswer: {answer}"},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "ethical_response_schema",
                    "schema": MODERATION_RESPONSE_SCHEMA,
                },
            },
        }
        headers = {"Authorization": f"Bearer {self._config.api_key}"}

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    url, json=payload, headers=headers, timeout=self._config.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ModerationUnavailableError(f"Moderation request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Moderation API error: {response.status_code}")
            raise ModerationUnavailableError(f"Moderation API error: {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
            verdict = json.loads(content)
            status = verdict["status"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ModerationUnavailableError(f"Invalid moderation payload: {e}") from e

        if status not in ("permitted", "not_permitted"):
            raise ModerationUnavailableError(f"Unknown moderation status: {status!r}")

        return ModerationResult(
            permitted=status == "permitted",
            reason=verdict.get("reason", ""),
            user_message=verdict.get("user_message", ""),
        )
