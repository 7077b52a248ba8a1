"""Exceptions raised by the Correios integration."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional


class CorreiosError(Exception):
    """Base class for every Correios integration failure."""

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self)}


class CorreiosConfigError(CorreiosError):
    """Missing, inactive or invalid tenant configuration."""


class CorreiosAPIError(CorreiosError):
    """Non-2xx answer (or transport failure) from the Correios API.

    ``status_code`` is ``None`` when the request never got a response
    (timeout, connection error). ``attempted_payload`` holds the exact body
    sent on the failing attempt so it can be persisted for diagnosis.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        raw_body: Optional[str] = None,
        code: Optional[str] = None,
        cause: Optional[str] = None,
        attempted_payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint
        self.raw_body = raw_body
        self.code = code
        self.cause = cause
        self.attempted_payload = attempted_payload

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": str(self)}
        if self.code:
            data["error_code"] = self.code
        if self.cause:
            data["error_cause"] = self.cause
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.endpoint:
            data["endpoint"] = self.endpoint
        return data


class CorreiosAuthError(CorreiosAPIError):
    """Credentials rejected by the token endpoint."""


def _first_message(value: Any) -> Optional[str]:
    if isinstance(value, list):
        parts = [str(v) for v in value if v not in (None, "")]
        return "; ".join(parts) or None
    if value in (None, ""):
        return None
    return str(value)


def parse_error_body(text: str) -> Dict[str, Optional[str]]:
    """Extract ``code``/``message``/``cause`` from a Correios error body.

    The API answers errors as JSON in a few shapes (``msgs`` list,
    ``mensagem``, ``message``, ``causa``); anything that is not JSON becomes
    the message verbatim.
    """
    result: Dict[str, Optional[str]] = {"code": None, "message": None, "cause": None}
    try:
        data = json.loads(text) if text else None
    except ValueError:
        data = None
    if not isinstance(data, dict):
        result["message"] = (text or "").strip() or None
        return result

    result["code"] = _first_message(data.get("codigo") or data.get("code"))
    result["message"] = (
        _first_message(data.get("msgs"))
        or _first_message(data.get("mensagem"))
        or _first_message(data.get("message"))
        or _first_message(data.get("error"))
        or (text or "").strip()
        or None
    )
    result["cause"] = _first_message(data.get("causa") or data.get("cause"))
    return result
