"""Sample transport using DashScope: chat for text, qwen3-asr-flash for audio.

The blocking SDK calls run in a worker thread so the controller's event
loop stays responsive. Both paths return ``{"text": ..., "raw": response}``
so the controller can pick up a transcript from audio responses.
"""

from __future__ import annotations

import asyncio
import base64
import os
from http import HTTPStatus
from typing import Any

from errors import AUTH_FAILED, NETWORK_ERROR, TRANSPORT_ERROR, TransportError
from interfaces import SendInput
from models import AudioPayload
from recorder import PCM, pcm_to_wav

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore


class DashscopeTransport:
    def __init__(
        self,
        api_key: str,
        chat_model: str = "qwen-turbo",
        asr_model: str = "qwen3-asr-flash",
        system_prompt: str = "",
        request_timeout_s: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._chat_model = chat_model
        self._asr_model = asr_model
        self._system_prompt = system_prompt
        self._request_timeout_s = request_timeout_s

    async def __call__(self, value: SendInput) -> dict[str, Any]:
        if isinstance(value, AudioPayload):
            return await asyncio.to_thread(self._transcribe, value)
        return await asyncio.to_thread(self._chat, str(value))

    # ------------------------------------------------------------------
    # Internal (worker thread)
    # ------------------------------------------------------------------

    def _chat(self, text: str) -> dict[str, Any]:
        api_key = self._require_sdk()
        messages = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.append({"role": "user", "content": text})
        try:
            response = dashscope.Generation.call(
                api_key=api_key,
                model=self._chat_model,
                messages=messages,
                result_format="message",
                timeout=self._request_timeout_s,
            )
        except Exception as exc:
            raise self._to_transport_error(exc) from exc
        return {"text": self._extract_text(self._check(response)), "raw": response}

    def _transcribe(self, payload: AudioPayload) -> dict[str, Any]:
        api_key = self._require_sdk()
        data = pcm_to_wav(payload.data) if payload.mime_type == PCM else payload.data
        audio_b64 = base64.b64encode(data).decode("ascii")
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._asr_model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": f"data:audio/wav;base64,{audio_b64}"}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False},
                timeout=self._request_timeout_s,
            )
        except Exception as exc:
            raise self._to_transport_error(exc) from exc
        return {"text": self._extract_text(self._check(response)), "raw": response}

    def _require_sdk(self) -> str:
        if dashscope is None:
            raise TransportError("dashscope is not installed")
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise TransportError("No API key configured", code=AUTH_FAILED)
        return api_key

    def _check(self, response: Any) -> Any:
        status = getattr(response, "status_code", None)
        if status is None and isinstance(response, dict):
            status = response.get("status_code")
        if status is not None and status != HTTPStatus.OK:
            code = getattr(response, "code", "") or ""
            message = getattr(response, "message", "") or f"HTTP {status}"
            raise self._to_transport_error(RuntimeError(f"{status} {code} {message}".strip()))
        return response

    def _extract_text(self, response: Any) -> str:
        """Pull the first message text out of a DashScope response."""
        if not isinstance(response, dict):
            return ""
        output = response.get("output") or {}
        choices = output.get("choices") or []
        if not choices:
            return str(output.get("text", "") or "")
        message = choices[0].get("message") or {}
        content = message.get("content", "")
        if isinstance(content, str):
            return content
        if content and isinstance(content[0], dict):
            return str(content[0].get("text", ""))
        return ""

    def _to_transport_error(self, exc: Exception) -> TransportError:
        """Map an SDK/network exception to a coded TransportError."""
        message = str(exc)
        low = message.lower()
        if "401" in low or "auth" in low or "api key" in low:
            code = AUTH_FAILED
        elif "timeout" in low or "network" in low or "connection" in low:
            code = NETWORK_ERROR
        else:
            code = TRANSPORT_ERROR
        return TransportError(message, code=code)
