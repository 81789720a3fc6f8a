"""Ollama HTTP API client for text completion."""

from __future__ import annotations

import logging

import requests

from mail_tasker.core.exceptions import LLMError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class OllamaClient:
    """Minimal client for Ollama's generate and tags endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        model: str = "llama2",
        *,
        timeout_seconds: float = 120.0,
        temperature: float = 0.1,
        top_p: float = 0.9,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._top_p = top_p

    def is_available(self) -> bool:
        """Check if the Ollama server is running."""
        try:
            resp = requests.get(f"{self.base_url}/api/tags", timeout=5)
            return resp.status_code == 200
        except requests.RequestException as e:
            logger.warning("Ollama server not available at %s: %s", self.base_url, e)
            return False

    def generate(self, prompt: str) -> str:
        """Run a non-streaming completion and return the raw response text.

        Raises:
            LLMError: On transport failure or a non-200 response.
        """
        try:
            resp = requests.post(
                f"{self.base_url}/api/generate",
                json={
                    "model": self.model,
                    "prompt": prompt,
                    "stream": False,
                    "options": {
                        "temperature": self._temperature,
                        "top_p": self._top_p,
                    },
                },
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise LLMError(f"Ollama request failed: {e}") from e

        if resp.status_code != 200:
            raise LLMError(f"Ollama generate failed: {resp.status_code} {resp.text[:200]}")

        try:
            text = resp.json().get("response", "")
        except ValueError as e:
            raise LLMError(f"Ollama returned a non-JSON body: {e}") from e

        logger.debug("Ollama response (%d chars)", len(text))
        return text
