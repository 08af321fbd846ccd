"""Judgment capability - an LLM that returns JSON verdicts.

The engine only depends on the :class:`Judge` protocol; :class:`OpenAIJudge` is
the production implementation and tests inject fakes.
"""

import json
from typing import Any, Protocol

from okk.config import settings


class JudgmentError(Exception):
    """The judgment capability is unavailable or returned unusable output."""


class Judge(Protocol):
    async def judge(self, system_prompt: str, user_payload: str) -> dict[str, Any]:
        """Return the parsed JSON object for one prompt/payload pair."""
        ...


class OpenAIJudge:
    """Judge backed by the OpenAI chat completions API in JSON mode."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._model = model or settings.openai_model
        self._temperature = settings.openai_temperature if temperature is None else temperature
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise JudgmentError("OPENAI_API_KEY is not configured")
            import openai

            self._client = openai.AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def judge(self, system_prompt: str, user_payload: str) -> dict[str, Any]:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_payload},
                ],
                response_format={"type": "json_object"},
                temperature=self._temperature,
            )
        except Exception as e:
            raise JudgmentError(f"OpenAI request failed: {e}") from e

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise JudgmentError("No content from LLM")
        return parse_verdict(content)


def parse_verdict(content: str) -> dict[str, Any]:
    """Parse a JSON verdict; anything but a JSON object is an error."""
    try:
        result = json.loads(content)
    except json.JSONDecodeError as e:
        raise JudgmentError(f"Malformed JSON from LLM: {e}") from e
    if not isinstance(result, dict):
        raise JudgmentError(f"Expected JSON object, got {type(result).__name__}")
    return result
