from __future__ import annotations

import pytest
import requests

from recap_processor.common.config import get_settings
from recap_processor.common.errors import ProviderError, UpstreamError
from recap_processor.llm.base import GenerateRequest
from recap_processor.llm.openai_compat import OpenAICompatProvider


class _Resp:
    def __init__(self, status_code: int, payload=None, headers=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _Session:
    def __init__(self, resp: _Resp | Exception) -> None:
        self.resp = resp
        self.calls: list[dict] = []

    def post(self, url, *, headers, json, timeout):
        self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        if isinstance(self.resp, Exception):
            raise self.resp
        return self.resp


@pytest.fixture
def llm_env(monkeypatch):
    s = get_settings()
    monkeypatch.setattr(s, "openai_api_base", "http://llm.local/v1/")
    monkeypatch.setattr(s, "openai_api_key", "sk-test")
    monkeypatch.setattr(s, "api_timeout_ms", 2_500)
    return s


def test_requires_credentials(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "openai_api_base", None)
    with pytest.raises(ProviderError):
        OpenAICompatProvider("gpt-test")


def test_successful_completion(llm_env) -> None:
    session = _Session(
        _Resp(200, {"model": "gpt-test", "choices": [{"message": {"content": "要約"}}], "usage": {"total_tokens": 9}})
    )
    provider = OpenAICompatProvider("gpt-test", session=session)

    res = provider.generate(GenerateRequest.single_user_turn("prompt", temperature=0.2, stop_sequences=["##"]))

    assert res.text == "要約"
    assert res.raw == {"model": "gpt-test", "usage": {"total_tokens": 9}}
    call = session.calls[0]
    assert call["url"] == "http://llm.local/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["timeout"] == 2.5
    assert call["json"]["messages"] == [{"role": "user", "content": "prompt"}]
    assert call["json"]["temperature"] == 0.2
    assert call["json"]["stop"] == ["##"]
    assert "max_tokens" not in call["json"]


def test_http_error_carries_status_and_retry_after(llm_env) -> None:
    provider = OpenAICompatProvider("gpt-test", session=_Session(_Resp(429, headers={"Retry-After": "7"}, text="slow down")))
    with pytest.raises(UpstreamError) as exc:
        provider.generate(GenerateRequest.single_user_turn("prompt"))
    assert exc.value.status == 429
    assert exc.value.retry_after_sec == 7.0


@pytest.mark.parametrize("resp", [_Resp(200, None, text="<html>"), _Resp(200, {"choices": []})])
def test_malformed_responses_are_provider_errors(llm_env, resp) -> None:
    provider = OpenAICompatProvider("gpt-test", session=_Session(resp))
    with pytest.raises(ProviderError):
        provider.generate(GenerateRequest.single_user_turn("prompt"))


def test_transport_timeout_propagates(llm_env) -> None:
    provider = OpenAICompatProvider("gpt-test", session=_Session(requests.Timeout("read timed out")))
    with pytest.raises(requests.Timeout):
        provider.generate(GenerateRequest.single_user_turn("prompt"))
