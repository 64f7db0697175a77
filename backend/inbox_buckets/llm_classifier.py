"""Structured bucket classification: one schema-constrained LLM call per batch."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Sequence

import openai

from .config import settings
from .errors import GenerationError, SetupError
from .records import BucketSnapshot, EmailRecord
from .services.response_validator import BUCKET_KEY, ID_KEY

logger = logging.getLogger(__name__)

RESULTS_KEY = "classifications"
PREVIEW_CHARS = 500


def _get_client():
    api_key = settings.openai_api_key
    if not api_key:
        raise SetupError("OPENAI_API_KEY not set. Add to .env or environment.")
    return openai.OpenAI(api_key=api_key, base_url=settings.openai_base_url or None)


def build_response_schema(email_ids: Sequence[str], bucket_names: Sequence[str]) -> dict:
    """JSON schema for {"classifications": [{"id", "bucket_name"}]} with both fields enum-constrained."""
    item = {
        "type": "object",
        "properties": {
            ID_KEY: {
                "type": "string",
                "enum": list(email_ids),
                "description": "The thread id being classified; one of the ids listed in the prompt.",
            },
            BUCKET_KEY: {
                "type": "string",
                "enum": list(bucket_names),
                "description": "The name of the bucket the thread belongs to.",
            },
        },
        "required": [ID_KEY, BUCKET_KEY],
        "additionalProperties": False,
    }
    return {
        "type": "object",
        "properties": {RESULTS_KEY: {"type": "array", "items": item}},
        "required": [RESULTS_KEY],
        "additionalProperties": False,
    }


def format_bucket_list(buckets: Sequence[BucketSnapshot]) -> str:
    return ", ".join(
        f"{b.name} (Description: {b.description})" if b.description else b.name
        for b in buckets
    )


def build_prompts(emails: Sequence[EmailRecord], buckets: Sequence[BucketSnapshot]) -> tuple[str, str]:
    system = (
        "You are an expert email classification assistant. Classify each of the provided "
        "email threads into exactly one of the available buckets. Use the bucket "
        f"descriptions to choose the most appropriate one: {format_bucket_list(buckets)}. "
        f"Return exactly one classification object ('{ID_KEY}' and '{BUCKET_KEY}') for each "
        "thread id listed in the user prompt. Use only the provided bucket names."
    )
    ids = [e.id for e in emails]
    parts = [
        f"Thread ID: {e.id}\nSubject: {e.subject or 'N/A'}\nSender: {e.sender or 'N/A'}\n"
        f"Preview: {(e.preview or 'N/A')[:PREVIEW_CHARS]}"
        for e in emails
    ]
    user = (
        f"Classify the following {len(emails)} email threads. Return a "
        f"'{RESULTS_KEY}' array with exactly {len(emails)} objects, one for each of these "
        f"thread ids: {', '.join(ids)}.\n\nEmails:\n" + "\n---\n".join(parts)
    )
    return system, user


def parse_response_text(text: str) -> Any:
    """Return the raw candidate array from the model's JSON text, unvalidated."""
    text = (text or "").strip()
    # Strip markdown code block if present
    if text.startswith("```"):
        text = re.sub(r"^```\w*\n?", "", text).replace("```", "").strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationError(f"model did not return valid JSON: {e}") from e
    if not isinstance(payload, dict) or RESULTS_KEY not in payload:
        raise GenerationError(f"model did not produce a schema-conforming object (no '{RESULTS_KEY}')")
    return payload[RESULTS_KEY]


class StructuredClassifier:
    """Wraps the chat-completions endpoint with strict json_schema output."""

    def __init__(self, client=None, model: Optional[str] = None, temperature: Optional[float] = None):
        self._client = client
        self.model = model or settings.openai_model
        self.temperature = settings.openai_temperature if temperature is None else temperature

    @property
    def client(self):
        if self._client is None:
            self._client = _get_client()
        return self._client

    def check_ready(self) -> None:
        """Resolve the API client now so a missing key fails the run before any batch starts."""
        self.client

    def classify_batch(
        self,
        emails: Sequence[EmailRecord],
        buckets: Sequence[BucketSnapshot],
        timeout_s: Optional[float] = None,
    ) -> Any:
        """
        Issue one structured-generation request for the batch and return the raw
        candidate array. Raises GenerationError on transport failure, timeout or
        an unparseable reply.
        """
        ids = [e.id for e in emails]
        system, user = build_prompts(emails, buckets)
        schema = build_response_schema(ids, [b.name for b in buckets])
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                max_tokens=min(60 * len(emails) + 200, 4096),
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "bucket_classifications", "strict": True, "schema": schema},
                },
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                timeout=timeout_s,
            )
        except openai.APITimeoutError as e:
            raise GenerationError(f"LLM request timed out: {e}") from e
        except openai.OpenAIError as e:
            raise GenerationError(f"LLM API error: {e}") from e

        if not response.choices:
            raise GenerationError("LLM returned no choices")
        message = response.choices[0].message
        if getattr(message, "refusal", None):
            raise GenerationError(f"LLM refused: {message.refusal}")
        return parse_response_text(message.content or "")
