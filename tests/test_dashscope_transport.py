"""Tests for DashscopeTransport."""

from __future__ import annotations

import base64
from unittest.mock import MagicMock

import pytest

import dashscope_transport as transport_mod
from dashscope_transport import DashscopeTransport
from errors import AUTH_FAILED, NETWORK_ERROR, TRANSPORT_ERROR, TransportError
from models import AudioPayload
from recorder import pcm_to_wav


@pytest.fixture
def mock_ds(monkeypatch) -> MagicMock:  # noqa: ANN001
    fake = MagicMock()
    monkeypatch.setattr(transport_mod, "dashscope", fake)
    return fake


def _message_response(content: object) -> dict:
    return {
        "status_code": 200,
        "output": {"choices": [{"message": {"role": "assistant", "content": content}}]},
    }


# ---------------------------------------------------------------
# Text
# ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_text_goes_to_chat_model(mock_ds: MagicMock) -> None:
    mock_ds.Generation.call.return_value = _message_response("Hi! How can I help?")
    transport = DashscopeTransport(api_key="test-key", system_prompt="be brief")

    result = await transport("hello")

    assert result["text"] == "Hi! How can I help?"
    kwargs = mock_ds.Generation.call.call_args.kwargs
    assert kwargs["api_key"] == "test-key"
    assert kwargs["model"] == "qwen-turbo"
    assert kwargs["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hello"},
    ]
    mock_ds.MultiModalConversation.call.assert_not_called()


# ---------------------------------------------------------------
# Audio
# ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_audio_goes_to_asr_model(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = _message_response([{"text": "你好世界"}])
    transport = DashscopeTransport(api_key="test-key")
    wav = pcm_to_wav(b"\x00\x00" * 1600)

    result = await transport(AudioPayload(data=wav, mime_type="audio/wav"))

    assert result["text"] == "你好世界"
    kwargs = mock_ds.MultiModalConversation.call.call_args.kwargs
    assert kwargs["model"] == "qwen3-asr-flash"
    audio = kwargs["messages"][1]["content"][0]["audio"]
    prefix = "data:audio/wav;base64,"
    assert audio.startswith(prefix)
    assert base64.b64decode(audio[len(prefix):]) == wav
    mock_ds.Generation.call.assert_not_called()


@pytest.mark.asyncio
async def test_raw_pcm_audio_is_wrapped_as_wav(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = _message_response([{"text": "ok"}])
    transport = DashscopeTransport(api_key="test-key")

    await transport(AudioPayload(data=b"\x00\x00" * 10, mime_type="audio/pcm"))

    audio = mock_ds.MultiModalConversation.call.call_args.kwargs["messages"][1]["content"][0]["audio"]
    decoded = base64.b64decode(audio.split(",", 1)[1])
    assert decoded[:4] == b"RIFF"


@pytest.mark.asyncio
async def test_empty_content_yields_empty_text(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = _message_response([])
    transport = DashscopeTransport(api_key="test-key")

    result = await transport(AudioPayload(data=b"", mime_type="audio/wav"))

    assert result["text"] == ""


# ---------------------------------------------------------------
# Failures
# ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_api_key_raises_auth_failed(mock_ds: MagicMock, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("DASHSCOPE_API_KEY", "")
    transport = DashscopeTransport(api_key="")

    with pytest.raises(TransportError) as info:
        await transport("hello")

    assert info.value.code == AUTH_FAILED
    mock_ds.Generation.call.assert_not_called()


@pytest.mark.asyncio
async def test_api_key_from_environment(mock_ds: MagicMock, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("DASHSCOPE_API_KEY", "env-key")
    mock_ds.Generation.call.return_value = _message_response("ok")
    transport = DashscopeTransport(api_key="")

    await transport("hello")

    assert mock_ds.Generation.call.call_args.kwargs["api_key"] == "env-key"


@pytest.mark.asyncio
async def test_missing_sdk_raises(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(transport_mod, "dashscope", None)
    transport = DashscopeTransport(api_key="test-key")

    with pytest.raises(TransportError, match="dashscope is not installed"):
        await transport("hello")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("message", "code"),
    [
        ("401 Unauthorized", AUTH_FAILED),
        ("Connection reset by peer", NETWORK_ERROR),
        ("unexpected payload", TRANSPORT_ERROR),
    ],
)
async def test_sdk_exception_is_mapped(mock_ds: MagicMock, message: str, code: str) -> None:
    mock_ds.Generation.call.side_effect = RuntimeError(message)
    transport = DashscopeTransport(api_key="test-key")

    with pytest.raises(TransportError) as info:
        await transport("hello")

    assert info.value.code == code
    assert message in str(info.value)


@pytest.mark.asyncio
async def test_non_ok_status_raises(mock_ds: MagicMock) -> None:
    mock_ds.Generation.call.return_value = {"status_code": 401, "output": None}
    transport = DashscopeTransport(api_key="test-key")

    with pytest.raises(TransportError) as info:
        await transport("hello")

    assert info.value.code == AUTH_FAILED
