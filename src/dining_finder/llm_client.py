from __future__ import annotations

import os
from typing import Optional

import requests

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
JSON_ONLY_SYSTEM_PROMPT = (
    "You are a helpful assistant that returns JSON responses. Always return valid JSON only, "
    "no markdown code blocks, no explanations."
)


class LLMError(RuntimeError):
    """Raised when a generative-text backend is unconfigured or returns an error payload."""


class GeminiClient:
    """
    Minimal REST client for Google's Gemini ``generateContent`` endpoint.

    Configuration is pulled from environment variables unless provided directly:

    - ``GEMINI_API_KEY`` – API key sent as the ``key`` query parameter
    - ``GEMINI_BASE_URL`` – defaults to ``https://generativelanguage.googleapis.com/v1beta``
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: int = 60,
    ):
        self.model = model if model.startswith("models/") else f"models/{model}"
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY")
        self.base_url = base_url or os.environ.get("GEMINI_BASE_URL", GEMINI_BASE_URL)
        self.timeout = timeout

    @property
    def name(self) -> str:
        return f"gemini:{self.model.removeprefix('models/')}"

    def generate(self, prompt: str, *, system_prompt: str | None = None) -> str:
        if not self.api_key:
            raise LLMError("Gemini API key missing. Set GEMINI_API_KEY.")

        payload: dict[str, object] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        endpoint = f"{self.base_url.rstrip('/')}/{self.model}:generateContent"
        response = requests.post(
            endpoint,
            params={"key": self.api_key},
            headers={"Content-Type": "application/json"},
            json=payload,
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise LLMError(f"Gemini API error {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as exc:
            raise LLMError(f"Invalid JSON from Gemini: {response.text[:200]}") from exc

        if not isinstance(body, dict):
            raise LLMError(f"Unexpected Gemini response: {str(body)[:200]}")
        candidates = body.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            raise LLMError(f"Gemini response missing candidates: {str(body)[:200]}")
        content = candidates[0].get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []
        text = "".join(
            part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        if not text.strip():
            raise LLMError("Gemini response missing text")
        return text


class OpenAIChatClient:
    """
    Client for the OpenAI chat completions API, used as the backup backend.

    - ``OPENAI_API_KEY`` – bearer token
    - ``OPENAI_CHAT_URL`` – defaults to ``https://api.openai.com/v1/chat/completions``
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "gpt-3.5-turbo",
        target_url: str | None = None,
        timeout: int = 60,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.model = model
        self.target_url = target_url or os.environ.get("OPENAI_CHAT_URL", OPENAI_CHAT_URL)
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def name(self) -> str:
        return f"openai:{self.model}"

    def generate(self, prompt: str, *, system_prompt: Optional[str] = JSON_ONLY_SYSTEM_PROMPT) -> str:
        if not self.api_key:
            raise LLMError("OpenAI API key missing. Set OPENAI_API_KEY.")

        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages = [{"role": "system", "content": system_prompt}, *messages]
        payload: dict[str, object] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        response = requests.post(self.target_url, headers=headers, json=payload, timeout=self.timeout)
        if response.status_code >= 400:
            raise LLMError(f"OpenAI API error {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as exc:
            raise LLMError(f"Invalid JSON from OpenAI: {response.text[:200]}") from exc

        if not isinstance(body, dict):
            raise LLMError(f"Unexpected OpenAI response: {str(body)[:200]}")
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise LLMError(f"OpenAI response missing choices: {str(body)[:200]}")
        message = choices[0].get("message", {})
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise LLMError("No response from OpenAI")
        return content
