from __future__ import annotations

import pytest

from recap_processor.common.errors import ProviderError, UnsupportedGeneratorError, ValidationError
from recap_processor.llm.base import GenerateRequest, LLMMessage
from recap_processor.llm.factory import build_provider, ensure_supported
from recap_processor.llm.mock import FakeLLMProvider


def _req(*msgs: tuple[str, str], **opts) -> GenerateRequest:
    return GenerateRequest(messages=[LLMMessage(role=r, content=c) for r, c in msgs], **opts)


def test_echo_returns_last_user_message() -> None:
    llm = FakeLLMProvider()
    res = llm.generate(_req(("system", "sys"), ("user", "first"), ("assistant", "a"), ("user", "second")))
    assert res.text == "second"
    assert res.raw["mode"] == "echo"
    assert res.raw["call_count"] == 1


def test_canned_and_template_modes() -> None:
    assert FakeLLMProvider("canned", canned_text="固定").generate(_req(("user", "x"))).text == "固定"

    llm = FakeLLMProvider("template", template="[{{ system }}] {{lastUser}} / {{unknown}}")
    assert llm.generate(_req(("system", "S"), ("user", "U"))).text == "[S] U / "


def test_script_mode_receives_request() -> None:
    llm = FakeLLMProvider("script", script=lambda r: r.messages[0].content.upper())
    assert llm.generate(_req(("user", "abc"))).text == "ABC"


def test_stop_sequences_and_max_tokens() -> None:
    llm = FakeLLMProvider()
    assert llm.generate(_req(("user", "alpha beta STOP gamma"), stop_sequences=["STOP"])).text == "alpha beta "
    assert llm.generate(_req(("user", "one two three four"), max_output_tokens=2)).text == "one two"


def test_empty_messages_rejected() -> None:
    with pytest.raises(ValidationError):
        FakeLLMProvider().generate(GenerateRequest(messages=[]))


def test_fail_after_calls() -> None:
    llm = FakeLLMProvider(fail_after_calls=1)
    llm.generate(_req(("user", "ok")))
    with pytest.raises(ProviderError):
        llm.generate(_req(("user", "boom")))
    assert llm.call_count == 2


def test_unknown_mode_rejected() -> None:
    with pytest.raises(ValueError):
        FakeLLMProvider("random")


def test_factory_selects_by_generator_name() -> None:
    assert ensure_supported(" Fake ") == "fake"
    assert isinstance(build_provider("fake", "any-model"), FakeLLMProvider)
    with pytest.raises(UnsupportedGeneratorError):
        ensure_supported("bedrock")
