"""Shared httpx round trip for JSON email APIs.

Subclasses describe the request (``_build_payload``, ``_auth_headers``) and
interpret the answer (``_parse_response``); timeouts and transport errors are
turned into failure results here.
"""

from __future__ import annotations

from abc import abstractmethod
import logging
from typing import TYPE_CHECKING, Any

import httpx

from .base import BaseEmailProvider, EmailDeliveryResult

if TYPE_CHECKING:
    from gloria_service.infra.email.config import EmailProviderConfig
    from gloria_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)

_STATUS_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTH_FAILED",
    403: "FORBIDDEN",
    413: "PAYLOAD_TOO_LARGE",
    422: "INVALID_REQUEST",
    429: "RATE_LIMITED",
}

_PRIORITY_HEADER = {"high": "1", "low": "5"}


def error_code_for_status(status_code: int) -> str:
    """Map an HTTP status from an email API to a delivery error code."""
    if status_code >= 500:
        return "SERVER_ERROR"
    return _STATUS_ERROR_CODES.get(status_code, "API_ERROR")


class HttpEmailProvider(BaseEmailProvider):
    """Base for providers that submit one JSON document per message."""

    API_BASE_URL: str
    SEND_PATH: str
    HEALTH_PATH: str

    def __init__(self, config: EmailProviderConfig) -> None:
        super().__init__(config)
        if not config.api_key:
            msg = f"{self.provider_name} provider requires api_key"
            raise ValueError(msg)
        self._api_key = config.api_key
        self._base_url = (config.api_endpoint or self.API_BASE_URL).rstrip("/")

    @abstractmethod
    def _auth_headers(self) -> dict[str, str]: ...

    @abstractmethod
    def _build_payload(self, message: EmailMessage) -> dict[str, Any]: ...

    @abstractmethod
    def _parse_response(self, response: httpx.Response, message: EmailMessage) -> EmailDeliveryResult: ...

    @staticmethod
    def _extra_headers(message: EmailMessage) -> dict[str, str]:
        headers = dict(message.headers)
        if message.priority.value in _PRIORITY_HEADER:
            headers["X-Priority"] = _PRIORITY_HEADER[message.priority.value]
        return headers

    def _api_failure(
        self, response: httpx.Response, message: EmailMessage, detail: str, **metadata: Any
    ) -> EmailDeliveryResult:
        return EmailDeliveryResult.failure_result(
            provider=self.provider_name,
            error=f"{self.provider_name} API error ({response.status_code}): {detail}",
            error_code=error_code_for_status(response.status_code),
            recipients_rejected=message.all_recipients,
            metadata={"status_code": response.status_code, **metadata},
        )

    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                response = await client.post(
                    f"{self._base_url}{self.SEND_PATH}",
                    json=self._build_payload(message),
                    headers={"Accept": "application/json", **self._auth_headers()},
                )
        except httpx.TimeoutException:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"{self.provider_name} API timeout",
                error_code="TIMEOUT",
            )
        except httpx.HTTPError as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"{self.provider_name} HTTP error: {e}",
                error_code="HTTP_ERROR",
            )
        return self._parse_response(response, message)

    async def _do_health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(f"{self._base_url}{self.HEALTH_PATH}", headers=self._auth_headers())
        except httpx.HTTPError as e:
            logger.debug("Email API health check failed", extra={"provider": self.provider_name, "error": str(e)})
            return False
        return response.status_code == 200


__all__ = ["HttpEmailProvider", "error_code_for_status"]
