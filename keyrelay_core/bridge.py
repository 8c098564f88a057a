"""
Page ↔ relay ↔ service bridge for KeyRelay.

Three actors, each owning its end of one-direction ``Channel`` pipes::

    PageProvider  --page_out-->  ContentRelay  --service_out-->  ServiceEndpoint
    PageProvider  <--page_in---  ContentRelay  <--service_in---  ServiceEndpoint

Only JSON text crosses a channel.  The relay is the trust boundary: it
forwards requests whose method is on ``ALLOWED_METHODS`` unchanged and answers
everything else itself with ``"UnsupportedMethodError"``.  Messages that are
not well-formed requests or responses are dropped where they arrive.

Each ``PageProvider`` keeps its own pending map keyed by request id, so
independent pages never see each other's responses.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

from keyrelay_core.protocol import (
    ALLOWED_METHODS,
    ProviderMethod,
    decode,
    encode,
    is_request,
    is_response,
    make_request,
    make_response,
)

if TYPE_CHECKING:
    from keyrelay_core.service import WalletService

logger = logging.getLogger("keyrelay_bridge")

DEFAULT_REQUEST_TIMEOUT = 60.0


class ProviderError(Exception):
    """A page request answered with an error string."""

    def __init__(self, message: str, request_id: str = ""):
        super().__init__(message)
        self.message = message
        self.request_id = request_id


class Channel:
    """One-direction pipe of JSON text messages."""

    def __init__(self, name: str = "channel"):
        self.name = name
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self.closed = False

    def post(self, message: dict[str, Any]) -> None:
        self.post_text(encode(message))

    def post_text(self, text: str) -> None:
        if self.closed:
            logger.debug(f"[{self.name}] post after close dropped")
            return
        self._queue.put_nowait(text)

    async def receive(self) -> str | None:
        """Next message text, or None once the channel has been closed."""
        return await self._queue.get()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)


class PageProvider:
    """Page-context actor exposing the injected provider surface."""

    def __init__(self, outbound: Channel, inbound: Channel, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self._out = outbound
        self._in = inbound
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Post one request and wait for its response."""
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._out.post(make_request(request_id, method, params))
            return await asyncio.wait_for(future, timeout=self.timeout)
        finally:
            self._pending.pop(request_id, None)

    async def listen(self) -> None:
        while True:
            text = await self._in.receive()
            if text is None:
                break
            msg = decode(text)
            if not is_response(msg):
                continue
            future = self._pending.pop(msg["id"], None)
            if future is None or future.done():
                continue
            if "error" in msg:
                future.set_exception(ProviderError(str(msg["error"]), msg["id"]))
            else:
                future.set_result(msg.get("result"))
        self.fail_pending("Bridge closed")

    def fail_pending(self, reason: str) -> None:
        """Fail every outstanding request with *reason*."""
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(ProviderError(reason, request_id))

    # ---- page surface ----

    async def connect(self) -> list[str]:
        return await self.request(ProviderMethod.REQUEST_ACCOUNTS.value)

    async def get_account_info(self) -> dict[str, Any]:
        return await self.request(ProviderMethod.GET_ACCOUNT_INFO.value)

    async def send_transaction(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.request(ProviderMethod.SEND_TRANSACTION.value, [payload])

    async def sign_message(self, message: str) -> dict[str, Any]:
        return await self.request(ProviderMethod.SIGN_MESSAGE.value, [message])


class ContentRelay:
    """Isolated relay between one page and the service."""

    def __init__(self, page_in: Channel, page_out: Channel, service_out: Channel, service_in: Channel):
        self._page_in = page_in
        self._page_out = page_out
        self._service_out = service_out
        self._service_in = service_in
        self.forwarded = 0
        self.rejected = 0

    async def run_page_side(self) -> None:
        while True:
            text = await self._page_in.receive()
            if text is None:
                break
            msg = decode(text)
            if not is_request(msg):
                continue
            if msg["method"] not in ALLOWED_METHODS:
                self.rejected += 1
                logger.info(f"Relay rejected method {msg['method']!r}")
                self._page_out.post(make_response(msg["id"], error="UnsupportedMethodError"))
                continue
            self.forwarded += 1
            self._service_out.post_text(text)

    async def run_service_side(self) -> None:
        while True:
            text = await self._service_in.receive()
            if text is None:
                break
            if is_response(decode(text)):
                self._page_out.post_text(text)


class ServiceEndpoint:
    """Service side of one page connection; requests run concurrently."""

    def __init__(self, service: WalletService, origin: str, inbound: Channel, outbound: Channel):
        self.service = service
        self.origin = origin
        self._in = inbound
        self._out = outbound
        self._inflight: set[asyncio.Task] = set()

    async def _handle(self, msg: dict[str, Any]) -> None:
        response = await self.service.handle_provider_request(msg, self.origin)
        self._out.post(response)

    async def run(self) -> None:
        try:
            while True:
                text = await self._in.receive()
                if text is None:
                    break
                msg = decode(text)
                if not is_request(msg):
                    continue
                task = asyncio.create_task(self._handle(msg))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
        finally:
            for task in list(self._inflight):
                task.cancel()


class BridgeConnection:
    """A wired page ↔ relay ↔ service path with its running tasks."""

    def __init__(self, provider: PageProvider, relay: ContentRelay, channels: list[Channel], tasks: list[asyncio.Task]):
        self.provider = provider
        self.relay = relay
        self._channels = channels
        self._tasks = tasks

    async def close(self) -> None:
        for ch in self._channels:
            ch.close()
        self.provider.fail_pending("Bridge closed")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)


def connect_page(service: WalletService, origin: str, *, timeout: float | None = None) -> BridgeConnection:
    """Wire a new page context for *origin* to *service*; needs a running loop."""
    if timeout is None:
        timeout = service.manager.config.bridge.request_timeout
    page_out = Channel(f"{origin}:page->relay")
    page_in = Channel(f"{origin}:relay->page")
    service_out = Channel(f"{origin}:relay->service")
    service_in = Channel(f"{origin}:service->relay")

    provider = PageProvider(page_out, page_in, timeout=timeout)
    relay = ContentRelay(page_out, page_in, service_out, service_in)
    endpoint = ServiceEndpoint(service, origin, service_out, service_in)

    tasks = [
        asyncio.create_task(provider.listen()),
        asyncio.create_task(relay.run_page_side()),
        asyncio.create_task(relay.run_service_side()),
        asyncio.create_task(endpoint.run()),
    ]
    logger.debug(f"Bridge opened for {origin}")
    return BridgeConnection(provider, relay, [page_out, page_in, service_out, service_in], tasks)
