"""Tests for OllamaClient with the HTTP layer mocked."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from mail_tasker.core.exceptions import LLMError
from mail_tasker.core.ollama_client import OllamaClient


def _response(status: int = 200, payload: object = None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.json.return_value = payload
    return resp


class TestIsAvailable:
    def test_up(self) -> None:
        client = OllamaClient("http://localhost:11434/")
        with patch("mail_tasker.core.ollama_client.requests.get") as mock_get:
            mock_get.return_value = _response(200)
            assert client.is_available() is True

        mock_get.assert_called_once_with("http://localhost:11434/api/tags", timeout=5)

    def test_non_200(self) -> None:
        with patch("mail_tasker.core.ollama_client.requests.get") as mock_get:
            mock_get.return_value = _response(503)
            assert OllamaClient().is_available() is False

    def test_connection_refused(self) -> None:
        with patch("mail_tasker.core.ollama_client.requests.get") as mock_get:
            mock_get.side_effect = requests.ConnectionError("refused")
            assert OllamaClient().is_available() is False


class TestGenerate:
    def test_posts_non_streaming_request(self) -> None:
        client = OllamaClient("http://ollama:11434", "mistral", timeout_seconds=30, temperature=0.2)
        with patch("mail_tasker.core.ollama_client.requests.post") as mock_post:
            mock_post.return_value = _response(200, {"response": '{"tasks": []}'})
            text = client.generate("prompt text")

        assert text == '{"tasks": []}'
        mock_post.assert_called_once_with(
            "http://ollama:11434/api/generate",
            json={
                "model": "mistral",
                "prompt": "prompt text",
                "stream": False,
                "options": {"temperature": 0.2, "top_p": 0.9},
            },
            timeout=30,
        )

    def test_transport_failure(self) -> None:
        with patch("mail_tasker.core.ollama_client.requests.post") as mock_post:
            mock_post.side_effect = requests.Timeout("read timed out")
            with pytest.raises(LLMError, match="read timed out"):
                OllamaClient().generate("p")

    def test_error_status(self) -> None:
        with patch("mail_tasker.core.ollama_client.requests.post") as mock_post:
            mock_post.return_value = _response(404, text="model 'llama2' not found")
            with pytest.raises(LLMError, match="404"):
                OllamaClient().generate("p")

    def test_non_json_body(self) -> None:
        with patch("mail_tasker.core.ollama_client.requests.post") as mock_post:
            resp = _response(200)
            resp.json.side_effect = ValueError("Expecting value")
            mock_post.return_value = resp
            with pytest.raises(LLMError, match="non-JSON"):
                OllamaClient().generate("p")

    def test_missing_response_field(self) -> None:
        with patch("mail_tasker.core.ollama_client.requests.post") as mock_post:
            mock_post.return_value = _response(200, {"done": True})
            assert OllamaClient().generate("p") == ""
