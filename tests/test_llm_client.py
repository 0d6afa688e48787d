from unittest import mock

import pytest

from dining_finder import llm_client
from dining_finder.llm_client import JSON_ONLY_SYSTEM_PROMPT, GeminiClient, LLMError, OpenAIChatClient

from conftest import FakeResponse


def test_gemini_generate_posts_prompt_and_joins_parts():
    response = FakeResponse(
        payload={"candidates": [{"content": {"parts": [{"text": "[{\"name\": "}, {"text": "\"Branner\"}]"}]}}]}
    )
    with mock.patch.object(llm_client.requests, "post", return_value=response) as post:
        client = GeminiClient("gemini-2.5-flash", api_key="g-key", base_url="https://example.test/v1beta/")
        text = client.generate("rank these", system_prompt="json only")

    assert text == '[{"name": "Branner"}]'
    assert client.name == "gemini:gemini-2.5-flash"
    url = post.call_args.args[0]
    kwargs = post.call_args.kwargs
    assert url == "https://example.test/v1beta/models/gemini-2.5-flash:generateContent"
    assert kwargs["params"] == {"key": "g-key"}
    assert kwargs["json"]["contents"][0]["parts"][0]["text"] == "rank these"
    assert kwargs["json"]["systemInstruction"] == {"parts": [{"text": "json only"}]}


def test_gemini_without_key_fails_fast(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with mock.patch.object(llm_client.requests, "post") as post:
        with pytest.raises(LLMError):
            GeminiClient("gemini-2.0-flash").generate("hi")
    post.assert_not_called()


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(status_code=429, text="quota"),
        FakeResponse(payload={"candidates": []}),
        FakeResponse(payload={"candidates": [{"content": {"parts": [{"text": "  "}]}}]}),
    ],
)
def test_gemini_error_payloads(response):
    with mock.patch.object(llm_client.requests, "post", return_value=response):
        with pytest.raises(LLMError):
            GeminiClient("gemini-pro-latest", api_key="k").generate("hi")


def test_openai_generate_sends_json_only_system_prompt():
    response = FakeResponse(payload={"choices": [{"message": {"content": "[]"}}]})
    with mock.patch.object(llm_client.requests, "post", return_value=response) as post:
        client = OpenAIChatClient(api_key="o-key", target_url="https://example.test/chat")
        assert client.generate("rank these") == "[]"

    kwargs = post.call_args.kwargs
    assert post.call_args.args[0] == "https://example.test/chat"
    assert kwargs["headers"]["Authorization"] == "Bearer o-key"
    assert kwargs["json"]["model"] == "gpt-3.5-turbo"
    assert kwargs["json"]["messages"][0] == {"role": "system", "content": JSON_ONLY_SYSTEM_PROMPT}
    assert kwargs["json"]["messages"][1] == {"role": "user", "content": "rank these"}
    assert client.name == "openai:gpt-3.5-turbo"


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(status_code=500, text="boom"),
        FakeResponse(payload={"choices": []}),
        FakeResponse(payload={"choices": [{"message": {"content": ""}}]}),
    ],
)
def test_openai_error_payloads(response):
    with mock.patch.object(llm_client.requests, "post", return_value=response):
        with pytest.raises(LLMError):
            OpenAIChatClient(api_key="k").generate("hi")


def test_openai_without_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(LLMError):
        OpenAIChatClient().generate("hi")


@pytest.mark.parametrize(
    "payload",
    [
        ["not", "an", "object"],
        {"candidates": ["text"]},
        {"candidates": {"content": "x"}},
        {"candidates": [{"content": {"parts": "plain"}}]},
        {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
    ],
)
def test_gemini_unexpected_shapes_are_llm_errors(payload):
    with mock.patch.object(llm_client.requests, "post", return_value=FakeResponse(payload=payload)):
        with pytest.raises(LLMError):
            GeminiClient("gemini-2.5-flash", api_key="k").generate("hi")


@pytest.mark.parametrize("payload", ["oops", {"choices": ["text"]}, {"choices": {"message": {}}}])
def test_openai_unexpected_shapes_are_llm_errors(payload):
    with mock.patch.object(llm_client.requests, "post", return_value=FakeResponse(payload=payload)):
        with pytest.raises(LLMError):
            OpenAIChatClient(api_key="k").generate("hi")


def test_undecodable_body_is_llm_error():
    with mock.patch.object(llm_client.requests, "post", return_value=FakeResponse(payload=None, text="<html>")):
        with pytest.raises(LLMError):
            GeminiClient("gemini-2.5-flash", api_key="k").generate("hi")
