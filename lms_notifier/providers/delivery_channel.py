import asyncio
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import httpx
from linebot.v3.messaging import (
    AsyncApiClient,
    AsyncMessagingApi,
    Configuration,
    PushMessageRequest,
    TextMessage,
)
from linebot.v3.messaging.exceptions import ApiException

from lms_notifier.config.settings import Settings
from lms_notifier.utils.errors import (
    ChannelNotReadyError,
    DeliveryError,
    FatalResourceError,
)
from lms_notifier.utils.logging import get_logger

logger = get_logger()


class ChannelStatus(str, Enum):
    READY = "ready"
    AWAITING_AUTHENTICATION = "awaiting-authentication"
    DISCONNECTED = "disconnected"


STATUS_MESSAGES = {
    ChannelStatus.READY: "Delivery channel is connected and ready",
    ChannelStatus.AWAITING_AUTHENTICATION: "Delivery channel is waiting for authentication",
    ChannelStatus.DISCONNECTED: "Delivery channel is disconnected",
}


class DeliveryChannel(ABC):
    """
    Messaging boundary used by the dispatcher and the collection runs.

    `send` returns on success and raises DeliveryError on failure, or
    ChannelNotReadyError when the channel refuses messages altogether.
    """

    name = "channel"

    async def init(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    @abstractmethod
    async def status(self) -> ChannelStatus:
        pass

    async def is_ready(self) -> bool:
        return await self.status() == ChannelStatus.READY

    @abstractmethod
    async def send(self, destination: str, text: str) -> None:
        pass


def normalize_phone(destination: str) -> str:
    return re.sub(r"[^0-9]", "", destination or "")


class BridgeDeliveryChannel(DeliveryChannel):
    """
    Messaging bridge reached over HTTP.

    The bridge owns the messaging session and exposes `GET /status` returning
    `{"ready": bool, "status": "ready" | "waiting_qr" | "disconnected"}` and
    `POST /send` taking `{"phone", "message"}` (503 while not ready).
    """

    name = "bridge"

    BRIDGE_STATES = {
        "ready": ChannelStatus.READY,
        "waiting_qr": ChannelStatus.AWAITING_AUTHENTICATION,
        "disconnected": ChannelStatus.DISCONNECTED,
    }

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def init(self) -> None:
        if self._client is not None:
            return
        try:
            url = httpx.URL(self.base_url)
        except httpx.InvalidURL as e:
            raise FatalResourceError(f"Invalid bridge URL: {self.base_url}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise FatalResourceError(f"Invalid bridge URL: {self.base_url}")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )
        logger.info(f"Bridge delivery channel initialised at {self.base_url}")

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Bridge delivery channel closed")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise FatalResourceError("Bridge delivery channel used before init()")
        return self._client

    async def status(self) -> ChannelStatus:
        try:
            response = await self.client.get("/status")
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Bridge status check failed: {e}")
            return ChannelStatus.DISCONNECTED

        if payload.get("ready") is True:
            return ChannelStatus.READY
        return self.BRIDGE_STATES.get(
            str(payload.get("status", "")).lower(), ChannelStatus.DISCONNECTED
        )

    async def send(self, destination: str, text: str) -> None:
        phone = normalize_phone(destination)
        if not phone:
            raise DeliveryError(f"Invalid destination: {destination!r}")

        try:
            response = await self.client.post(
                "/send", json={"phone": phone, "message": text}
            )
        except httpx.TimeoutException as e:
            raise DeliveryError(f"Bridge timed out sending to {phone}") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Bridge request failed: {e}") from e

        if response.status_code == 503:
            raise ChannelNotReadyError(self._error_text(response, "Bridge not ready"))
        if response.is_error:
            raise DeliveryError(
                self._error_text(response, f"Bridge returned {response.status_code}")
            )

    @staticmethod
    def _error_text(response: httpx.Response, default: str) -> str:
        try:
            return response.json().get("error") or default
        except ValueError:
            return default


class LineDeliveryChannel(DeliveryChannel):
    """LINE Messaging API push delivery; destinations are LINE user IDs."""

    name = "line"

    def __init__(self, access_token: str):
        self.access_token = access_token
        self._api_client: Optional[AsyncApiClient] = None
        self._messaging_api: Optional[AsyncMessagingApi] = None

    async def init(self) -> None:
        if self._api_client is not None or not self.access_token:
            if not self.access_token:
                logger.warning("LINE channel access token is not configured")
            return
        try:
            configuration = Configuration(access_token=self.access_token)
            self._api_client = AsyncApiClient(configuration=configuration)
            self._messaging_api = AsyncMessagingApi(self._api_client)
        except Exception as e:
            raise FatalResourceError(f"Failed to initialise LINE client: {e}") from e
        logger.info("LINE delivery channel initialised")

    async def shutdown(self) -> None:
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None
            self._messaging_api = None
            logger.info("LINE delivery channel closed")

    async def status(self) -> ChannelStatus:
        if not self.access_token:
            return ChannelStatus.AWAITING_AUTHENTICATION
        if self._messaging_api is None:
            return ChannelStatus.DISCONNECTED
        return ChannelStatus.READY

    async def send(self, destination: str, text: str) -> None:
        if self._messaging_api is None:
            raise ChannelNotReadyError("LINE channel is not initialised")
        try:
            await self._messaging_api.push_message(
                PushMessageRequest(
                    to=destination,
                    messages=[TextMessage(text=text, quickReply=None, quoteToken=None)],
                    notificationDisabled=False,
                )
            )
        except ApiException as e:
            raise DeliveryError(f"LINE push failed ({e.status}): {e.reason}") from e


def build_delivery_channel(settings: Settings) -> DeliveryChannel:
    if settings.DELIVERY_CHANNEL == "line":
        return LineDeliveryChannel(settings.LINE_CHANNEL_ACCESS_TOKEN)
    return BridgeDeliveryChannel(
        settings.BRIDGE_BASE_URL, timeout=settings.BRIDGE_TIMEOUT_SECONDS
    )


async def channel_is_ready(channel: DeliveryChannel, timeout: float) -> bool:
    """Readiness check bounded by `timeout`; any failure counts as not ready."""
    try:
        return await asyncio.wait_for(channel.is_ready(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{channel.name} readiness check timed out after {timeout}s")
        return False
    except Exception as e:
        logger.warning(f"{channel.name} readiness check failed: {e}")
        return False
