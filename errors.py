"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
UNSUPPORTED = "UNSUPPORTED"
HARDWARE_ERROR = "HARDWARE_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
TRANSPORT_ERROR = "TRANSPORT_ERROR"
CONFIG_ERROR = "CONFIG_ERROR"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone permission is required.",
    DEVICE_UNAVAILABLE: "No usable microphone was found.",
    UNSUPPORTED: "Audio recording is not supported in this environment.",
    HARDWARE_ERROR: "Recording error occurred.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    TRANSPORT_ERROR: "Request failed.",
    CONFIG_ERROR: "Invalid configuration.",
}


class InputError(Exception):
    """Base error carrying one of the codes above."""

    default_code = TRANSPORT_ERROR

    def __init__(self, message: str = "", code: str | None = None) -> None:
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES.get(self.code, "")
        super().__init__(self.message)


class CaptureError(InputError):
    default_code = HARDWARE_ERROR


class TransportError(InputError):
    default_code = TRANSPORT_ERROR


class ConfigurationError(InputError, ValueError):
    default_code = CONFIG_ERROR
