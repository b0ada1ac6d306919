"""Channel gateway client used to deliver automated replies.

The gateway owns per-platform delivery (WhatsApp, web chat, email, ...);
this side only POSTs one OutboundMessage and reads back a SendResult.
Connection failures are retried because the request never reached the
gateway. Any other failure is returned as an unsuccessful SendResult so the
orchestrator can raise DispatchFailure.
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.relay.orchestrator.schemas import OutboundMessage, SendResult

logger = structlog.get_logger(__name__)

_connect_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    reraise=True,
)


class ChannelSender(Protocol):
    async def send(self, message: OutboundMessage) -> SendResult: ...


class HttpChannelSender:
    """POSTs outbound messages to the channel gateway.

    Args:
        base_url: Gateway root URL.
        token: Bearer token; omitted from headers when empty.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def send(self, message: OutboundMessage) -> SendResult:
        try:
            response = await self._post(message)
        except httpx.HTTPError as exc:
            logger.warning(
                "dispatch.request_failed",
                conversation_id=message.conversation_id,
                platform=message.platform,
                error=str(exc),
            )
            return SendResult(success=False, error=str(exc) or type(exc).__name__)

        if response.status_code >= 400:
            return SendResult(
                success=False,
                error=f"gateway returned {response.status_code}: {response.text[:200]}",
            )

        try:
            return SendResult.model_validate(response.json())
        except ValueError as exc:
            return SendResult(success=False, error=f"invalid gateway response: {exc}")

    @_connect_retry
    async def _post(self, message: OutboundMessage) -> httpx.Response:
        return await self._client.post(
            "/messages/send",
            json=message.model_dump(mode="json", by_alias=True),
        )

    async def close(self) -> None:
        await self._client.aclose()
