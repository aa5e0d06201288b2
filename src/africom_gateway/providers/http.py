"""Shared send flow for adapters that talk to a REST upstream."""

import logging
import time
from abc import abstractmethod
from collections.abc import Iterator
from typing import Any

import httpx

from africom_gateway.enums import SendStatus
from africom_gateway.providers.base import (
    ProviderAdapter,
    ProviderCapabilities,
    SendOptions,
    SendOutcome,
    elapsed_ms,
    mask_recipient,
)

logger = logging.getLogger(__name__)

# Raised while picking apart an upstream payload of the wrong shape.
MALFORMED_RESPONSE_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


class _DeadlineStream(httpx.SyncByteStream):
    """Body stream that gives up once the call's overall deadline passes.

    httpx timeouts apply per connect/read/write step, so an upstream that
    trickles bytes could otherwise hold a send open indefinitely.
    """

    def __init__(self, stream: httpx.SyncByteStream, deadline: float, request: httpx.Request) -> None:
        self._stream = stream
        self._deadline = deadline
        self._request = request

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._stream:
            if time.monotonic() > self._deadline:
                raise httpx.ReadTimeout("Response body exceeded the call deadline", request=self._request)
            yield chunk

    def close(self) -> None:
        self._stream.close()


class HttpProviderAdapter(ProviderAdapter):
    """Adapter backed by an ``httpx.Client``.

    Subclasses implement ``validate`` and ``_deliver``; ``send`` wraps
    them so that timeouts, transport errors and malformed payloads all
    come back as ``SendOutcome`` values with latency recorded.
    """

    #: Error code reported for local validation failures.
    invalid_error_code = "INVALID_PARAMETERS"
    #: Error code reported for failures with no upstream code.
    generic_error_code = "PROVIDER_ERROR"

    def __init__(
        self,
        capabilities: ProviderCapabilities,
        base_url: str,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(capabilities)
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=capabilities.timeout_seconds)

    def validate(self, options: SendOptions) -> str | None:
        """Return a reason string when *options* cannot be sent."""
        if not options.recipient or not options.message or not options.sender_id:
            return "Missing required parameters: recipient, message, or sender_id"
        return None

    @abstractmethod
    def _deliver(self, options: SendOptions) -> SendOutcome:
        """Perform the upstream call and translate its response.

        May raise ``httpx.HTTPError`` or any of
        ``MALFORMED_RESPONSE_ERRORS``; ``send`` converts those.
        """

    def send(self, options: SendOptions) -> SendOutcome:
        reason = self.validate(options)
        if reason is not None:
            return self._reject_invalid(options, reason, self.invalid_error_code)

        log_ctx = {
            "provider": self.name,
            "recipient": mask_recipient(options.recipient),
            "sender_id": options.sender_id,
            "message_length": len(options.message),
        }
        logger.info("Sending message", extra=log_ctx)

        started = time.monotonic()
        try:
            outcome = self._deliver(options)
        except httpx.TimeoutException:
            logger.warning("Provider request timed out", extra=log_ctx)
            outcome = self._outcome(
                False,
                SendStatus.PROVIDER_ERROR,
                f"{self.name} did not respond within {self.capabilities.timeout_seconds}s",
                error_code="TIMEOUT",
            )
        except httpx.HTTPError as exc:
            logger.exception("Provider transport error", extra=log_ctx)
            outcome = self._outcome(
                False,
                SendStatus.PROVIDER_ERROR,
                str(exc) or "Transport error",
                error_code=self.generic_error_code,
            )
        except MALFORMED_RESPONSE_ERRORS:
            logger.exception("Malformed provider response", extra=log_ctx)
            outcome = self._outcome(
                False,
                SendStatus.FAILED,
                "Failed to parse provider response",
                error_code=self.generic_error_code,
            )

        latency = elapsed_ms(started)
        self.stats.record_attempt(outcome.success, latency)

        logger.info(
            "Provider response received",
            extra={
                **log_ctx,
                "success": outcome.success,
                "status": outcome.status,
                "external_id": outcome.external_id,
                "latency_ms": round(latency, 1),
            },
        )
        return outcome

    def close(self) -> None:
        self._client.close()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        auth: httpx.Auth | tuple[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request bounded by ``capabilities.timeout_seconds`` overall."""
        deadline = time.monotonic() + self.capabilities.timeout_seconds
        request = self._client.build_request(method, self._url(path), **kwargs)
        response = self._client.send(request, auth=auth, stream=True)
        try:
            response.stream = _DeadlineStream(response.stream, deadline, request)
            response.read()
        finally:
            response.close()
        return response


def json_object(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body, raising ``ValueError`` for anything else."""
    body = response.json()
    if not isinstance(body, dict):
        raise ValueError(f"Expected a JSON object, got {type(body).__name__}")
    return body


def error_body(response: httpx.Response) -> dict[str, Any]:
    """Best-effort JSON object from an error response; ``{}`` for HTML or text."""
    try:
        return json_object(response)
    except ValueError:
        return {}


def as_dict(value: Any) -> dict[str, Any]:
    """*value* when it is a JSON object, else ``{}``."""
    return value if isinstance(value, dict) else {}
