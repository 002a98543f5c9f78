"""
Structured Completion Client (OpenAI, JSON mode)

Thin wrapper around chat.completions used by the AI classifier and the COA
parser. Every call has a bounded timeout; a timeout is retried once and then
surfaced as CompletionTimeoutError. Any other transport/API failure is an
ExternalServiceError.
"""

import logging
import os
from typing import Optional

import openai
from dotenv import load_dotenv
from flask import current_app, has_app_context

from app.services.errors import ExternalServiceError, CompletionTimeoutError

load_dotenv()

logger = logging.getLogger(__name__)

# OpenAI API Configuration
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
DEFAULT_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o")
DEFAULT_TIMEOUT_SECONDS = float(os.environ.get("COMPLETION_TIMEOUT_SECONDS", "30"))

MAX_ATTEMPTS = 2  # first call + one retry on timeout


class CompletionClient:
    """
    Usage:
        client = CompletionClient()
        raw = client.complete_json(SYSTEM_PROMPT, "Product: Blue Dream THCA Flower")
        data = json.loads(raw)
    """

    def __init__(
        self,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
    ):
        self.model = model or DEFAULT_MODEL
        self.timeout = float(timeout or DEFAULT_TIMEOUT_SECONDS)
        self.api_key = api_key or OPENAI_API_KEY
        self._client = None

    @property
    def client(self):
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise ExternalServiceError("OPENAI_API_KEY environment variable is not set")
            # retried in complete_json
            self._client = openai.OpenAI(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def complete_json(self, system_prompt: str, user_content: str, temperature: float = 0.1) -> str:
        """
        Request a JSON object completion.

        Returns:
            The raw JSON object text

        Raises:
            CompletionTimeoutError: both attempts timed out
            ExternalServiceError: any other failure, including an empty response
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_content},
                    ],
                    response_format={"type": "json_object"},
                    temperature=temperature,
                )
            except openai.APITimeoutError as e:
                if attempt < MAX_ATTEMPTS:
                    logger.warning(f"Completion timed out after {self.timeout}s, retrying")
                    continue
                raise CompletionTimeoutError(
                    f"Completion timed out after {MAX_ATTEMPTS} attempts ({self.timeout}s each)"
                ) from e
            except openai.OpenAIError as e:
                logger.error(f"Completion request failed: {e}")
                raise ExternalServiceError(f"Completion request failed: {e}") from e

            content = response.choices[0].message.content if response.choices else None
            if not content:
                raise ExternalServiceError("Completion service returned an empty response")
            return content

        raise CompletionTimeoutError("Completion timed out")


_client: Optional[CompletionClient] = None


def get_completion_client() -> CompletionClient:
    """
    Completion client for the current Flask app, falling back to a
    module-level singleton outside an application context.
    """
    if has_app_context():
        client = current_app.extensions.get("completion_client")
        if client is not None:
            return client

    global _client
    if _client is None:
        _client = CompletionClient()
    return _client
