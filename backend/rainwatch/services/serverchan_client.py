"""
Push notifications through ServerChan (WeChat).
A missing token, a transport failure or a non-zero provider code all come back
as DeliveryResult(success=False); send() never raises.
"""
import logging

import httpx

from rainwatch.core.errors import RetriesExhausted
from rainwatch.schemas.dispatch import DeliveryResult
from rainwatch.services.http_retry import PUSH_POLICY, RetryingExecutor, RetryPolicy

logger = logging.getLogger(__name__)

SERVERCHAN_API_URL = "https://sctapi.ftqq.com"
SUCCESS_CODE = 0


class ServerChanClient:
    def __init__(
        self,
        executor: RetryingExecutor | None = None,
        policy: RetryPolicy = PUSH_POLICY,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.executor = executor or RetryingExecutor()
        self.policy = policy
        self._transport = transport

    async def send(self, token: str, title: str, body: str) -> DeliveryResult:
        if not token:
            return DeliveryResult(success=False, message="Push token is empty")

        url = f"{SERVERCHAN_API_URL}/{token}.send"
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                resp = await self.executor.execute(
                    lambda: client.post(url, json={"title": title, "desp": body}),
                    self.policy,
                    label="ServerChan send",
                )
            data = resp.json()
        except RetriesExhausted as e:
            logger.warning("ServerChan send gave up: %s", e)
            return DeliveryResult(success=False, message=str(e))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ServerChan send failed: %s", e)
            return DeliveryResult(success=False, message=str(e) or "Network error")

        if not isinstance(data, dict):
            return DeliveryResult(success=False, message=f"Unexpected response (HTTP {resp.status_code})")
        if data.get("code") == SUCCESS_CODE:
            return DeliveryResult(success=True, message=data.get("message") or "Sent")
        logger.warning("ServerChan returned code %s: %s", data.get("code"), data.get("message"))
        return DeliveryResult(success=False, message=data.get("message") or "Send failed")
