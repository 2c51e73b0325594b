"""Consensus Analysis Pipeline.

Sends a discussion's question and its ordered responses to an
OpenAI-compatible chat completions endpoint and asks for:
- Groups of similar responses (label, criteria, 1-based member indices, count)
- The consensus group with a confidence score and reasoning

The reply is validated strictly against ConsensusAnalysis. Every failure
mode (missing key, transport error, timeout, non-200, malformed or
inconsistent payload) surfaces as AnalysisUnavailableError.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..schemas.analysis import ConsensusAnalysis
from .errors import AnalysisUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class AnalysisConfig:
    """Connection settings for the analysis service."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 30.0
    temperature: float = 0.7

    @classmethod
    def from_settings(cls, settings) -> "AnalysisConfig":
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.analysis_base_url,
            model=settings.analysis_model,
            timeout_seconds=settings.analysis_timeout_seconds,
            temperature=settings.analysis_temperature,
        )


# JSON schema the model must answer with
ANALYSIS_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["question", "groups", "consensus"],
    "properties": {
        "question": {"type": "string"},
        "groups": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["id", "label", "criteria", "members", "count"],
                "properties": {
                    "id": {"type": "string"},
                    "label": {"type": "string"},
                    "criteria": {"type": "string"},
                    "members": {"type": "array", "items": {"type": "number"}},
                    "count": {"type": "number"},
                },
            },
        },
        "consensus": {
            "type": "object",
            "additionalProperties": False,
            "required": ["group_id", "label", "confidence", "reasoning"],
            "properties": {
                "group_id": {"type": "string"},
                "label": {"type": "string"},
                "confidence": {"type": "number"},
                "reasoning": {"type": "string"},
            },
        },
    },
}


class ConsensusAnalyzerService:
    """
    Groups free-text responses into themes and picks the consensus.

    The HTTP client may be injected (tests pass one built on
    httpx.MockTransport); otherwise a short-lived client is created per call.
    """

    SYSTEM_PROMPT = (
        "You are an expert at analyzing survey responses and identifying consensus. "
        "Group similar responses together and identify the strongest consensus. "
        "Every response must belong to exactly one group; member numbers refer to "
        "the numbered responses, and each group's count equals its number of members. "
        "Confidence is between 0 and 1 and reflects the share of responses that agree."
    )

    def __init__(
        self,
        config: AnalysisConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        """Check if the analysis API is configured."""
        return bool(self._config.api_key)

    async def analyze(self, question: str, responses: list[str]) -> ConsensusAnalysis:
        """
        Analyze responses and return a validated ConsensusAnalysis.

        Args:
            question: The discussion prompt
            responses: Response texts in submission order

        Raises:
            AnalysisUnavailableError: for any failure, including an empty
                response list
        """
        if not responses:
            raise AnalysisUnavailableError("No responses to analyze")
        if not self.is_configured:
            raise AnalysisUnavailableError("Analysis API key not configured")

        payload = self._build_payload(question, responses)
        body = await self._call_api(payload)
        return self._parse_response(body, total_responses=len(responses))

    async def analyze_best_effort(
        self, question: str, responses: list[str]
    ) -> ConsensusAnalysis | None:
        """Like analyze(), but logs failures and returns None."""
        if not responses:
            return None
        try:
            return await self.analyze(question, responses)
        except AnalysisUnavailableError as e:
            logger.warning(f"Consensus analysis unavailable: {e}")
            return None

    def format_prompt(self, question: str, responses: list[str]) -> str:
        """Number responses from 1 so groups can reference them."""
        numbered = "\n".join(
            f"{index}. {text}" for index, text in enumerate(responses, start=1)
        )
        return (
            "Analyze the following responses to a question and group them by similar "
            "themes or preferences. Identify the consensus answer.\n\n"
            f"Question: {question}\n\n{numbered}"
        )

    def _build_payload(self, question: str, responses: list[str]) -> dict[str, Any]:
        return {
            "model": self._config.model,
            "temperature": self._config.temperature,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": self.format_prompt(question, responses)},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "consensus_analysis",
                    "schema": ANALYSIS_RESPONSE_SCHEMA,
                },
            },
        }

    async def _call_api(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    url, json=payload, headers=headers, timeout=self._config.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise AnalysisUnavailableError(
                f"Analysis request timed out after {self._config.timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise AnalysisUnavailableError(f"Analysis request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Analysis API error: {response.status_code} - {response.text[:500]}")
            raise AnalysisUnavailableError(f"Analysis API error: {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise AnalysisUnavailableError("Analysis API returned a non-JSON body") from e

    def _parse_response(
        self, body: dict[str, Any], total_responses: int
    ) -> ConsensusAnalysis:
        """Extract the message content and validate it against the schema."""
        try:
            choices = body.get("choices") or []
            if not choices:
                raise ValueError("No choices in response")
            text = (choices[0].get("message") or {}).get("content")
            if not text:
                raise ValueError("Empty message content")

            # Handle potential markdown code blocks
            if "```json" in text:
                text = text.split("```json")[1].split("```")[0]
            elif "```" in text:
                text = text.split("```")[1].split("```")[0]

            data = json.loads(text.strip())
            return ConsensusAnalysis.model_validate(
                data, context={"total_responses": total_responses}
            )
        except (json.JSONDecodeError, PydanticValidationError, ValueError, AttributeError) as e:
            logger.error(f"Rejected analysis payload: {e}")
            logger.debug(f"Raw response: {body}")
            raise AnalysisUnavailableError(f"Invalid analysis payload: {e}") from e
