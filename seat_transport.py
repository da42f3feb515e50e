"""
How a virtual user finds out which seats are still free.

Poll mode re-fetches the whole seat grid before every booking attempt. Push
mode keeps a websocket open and reads the freshest update the server sent.
Both hand back full snapshots; nothing is merged between refreshes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, List, Optional

import aiohttp

from booking_config import BookingConfig, TransportMode
from booking_errors import DecodeError, FatalTransportError
from seat_availability import (
    SeatCoordinate,
    SeatEncoding,
    parse_available_seats,
    parse_seat_status_message,
)

logger = logging.getLogger(__name__)

_CLOSING_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
    aiohttp.WSMsgType.ERROR,
)


def _message_text(msg: Any) -> Optional[str]:
    if msg.type == aiohttp.WSMsgType.TEXT:
        return msg.data
    if msg.type == aiohttp.WSMsgType.BINARY:
        return msg.data.decode("utf-8", errors="replace")
    return None


class SeatChannel:
    """
    Websocket with a bounded buffer of unread text messages.

    A reader task starts as soon as the channel does and keeps appending
    inbound messages to a deque of ``capacity`` entries, so only the newest
    ``capacity`` unread messages survive until the next drain(). Buffering
    does not depend on the first update arriving in time.
    """

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, capacity: int = 1):
        self.ws = ws
        self.capacity = capacity
        self._buffer: deque = deque(maxlen=capacity)
        self._arrived = asyncio.Event()
        self._reader: Optional[asyncio.Task] = None
        self.received = 0
        self.dropped = 0
        self.ended = False
        self.closed = False

    def start(self):
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    async def receive_first(self, timeout: float) -> str:
        """
        Wait for the first text message and take the newest one buffered.

        Raises:
            asyncio.TimeoutError: nothing arrived within ``timeout`` seconds
            FatalTransportError: the server closed the channel first
        """
        self.start()
        await asyncio.wait_for(self._arrived.wait(), timeout)
        messages = self.drain()
        if not messages:
            raise FatalTransportError("seat stream closed before the first update")
        return messages[-1]

    async def _read_loop(self):
        try:
            while True:
                msg = await self.ws.receive()
                if msg.type in _CLOSING_TYPES:
                    logger.debug("Seat stream ended: %s", msg.type)
                    return
                text = _message_text(msg)
                if text is None:
                    continue
                if len(self._buffer) == self.capacity:
                    self.dropped += 1
                self._buffer.append(text)
                self.received += 1
                self._arrived.set()
        finally:
            self.ended = True
            self._arrived.set()

    def drain(self) -> List[str]:
        """Take every buffered message, oldest first."""
        messages = list(self._buffer)
        self._buffer.clear()
        return messages

    async def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            if self._reader:
                self._reader.cancel()
                try:
                    await self._reader
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning("Seat stream reader failed: %r", e)
        finally:
            await self.ws.close()


# =============================================================================
# TRANSPORT STRATEGIES
# =============================================================================

class SeatTransport(ABC):
    """Source of availability snapshots for one virtual user."""

    def __init__(self, client, encoding: SeatEncoding):
        self.client = client
        self.encoding = encoding
        self._snapshot: List[SeatCoordinate] = []

    @property
    def current(self) -> List[SeatCoordinate]:
        return self._snapshot

    @abstractmethod
    async def subscribe(self) -> List[SeatCoordinate]:
        """Start tracking availability and return the initial snapshot."""

    @abstractmethod
    async def refresh(self) -> List[SeatCoordinate]:
        """Return the freshest snapshot available right now."""

    async def close(self):
        pass

    async def __aenter__(self) -> "SeatTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class PollSeatTransport(SeatTransport):
    """Re-fetch the seat grid on every refresh."""

    async def subscribe(self) -> List[SeatCoordinate]:
        return await self.refresh()

    async def refresh(self) -> List[SeatCoordinate]:
        try:
            grid = await self.client.fetch_seat_status()
        except (DecodeError, FatalTransportError) as e:
            logger.warning("Seat status fetch failed for user %s: %s", self.client.user_num, e)
            self._snapshot = []
            return self._snapshot

        self._snapshot = parse_available_seats(grid, self.encoding)
        return self._snapshot


class PushSeatTransport(SeatTransport):
    """Follow seat updates over a websocket."""

    def __init__(
        self,
        client,
        encoding: SeatEncoding,
        buffer_size: int = 1,
        first_message_timeout: float = 32.0,
    ):
        super().__init__(client, encoding)
        self.buffer_size = buffer_size
        self.first_message_timeout = first_message_timeout
        self.channel: Optional[SeatChannel] = None

    async def connect(self) -> SeatChannel:
        ws = await self.client.open_seat_stream()
        self.channel = SeatChannel(ws, capacity=self.buffer_size)
        self.channel.start()
        return self.channel

    async def prime_initial(self) -> List[SeatCoordinate]:
        """Parse the first update the server sends after connecting."""
        try:
            text = await self.channel.receive_first(self.first_message_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "No seat update within %.0fs for user %s",
                self.first_message_timeout, self.client.user_num,
            )
            return self._snapshot
        except FatalTransportError as e:
            logger.warning("Seat stream for user %s: %s", self.client.user_num, e)
            return self._snapshot

        try:
            self._snapshot = parse_seat_status_message(text, self.encoding)
        except DecodeError as e:
            logger.warning("Seat status parse error: %s", e)
        return self._snapshot

    async def subscribe(self) -> List[SeatCoordinate]:
        await self.connect()
        return await self.prime_initial()

    async def refresh(self) -> List[SeatCoordinate]:
        messages = self.channel.drain() if self.channel else []
        if not messages:
            return self._snapshot

        try:
            self._snapshot = parse_seat_status_message(messages[-1], self.encoding)
        except DecodeError as e:
            # keep the previous view rather than going blind
            logger.warning("Seat status parse error: %s", e)
        return self._snapshot

    async def close(self):
        if self.channel:
            await self.channel.close()


def create_transport(mode: TransportMode, client, config: BookingConfig) -> SeatTransport:
    """Build the availability transport chosen for this run."""
    if mode is TransportMode.PUSH:
        return PushSeatTransport(
            client,
            config.seat_encoding,
            buffer_size=config.ws_buffer_size,
            first_message_timeout=config.ws_first_message_timeout,
        )
    return PollSeatTransport(client, config.seat_encoding)
