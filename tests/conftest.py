"""
Shared fakes for the booking load-test suite.
"""

import asyncio
import random
from types import SimpleNamespace
from typing import List, Optional

import aiohttp
import pytest

from booking_client import ActionResult, AttemptOutcome, BookingAction, BookingAttemptResult
from seat_availability import SeatCoordinate
from seat_transport import SeatTransport

_ATTEMPT_STATUS = {
    AttemptOutcome.SUCCESS: 201,
    AttemptOutcome.CONFLICT: 409,
    AttemptOutcome.FATAL: 500,
}


class FakeBookingClient:
    """In-memory stand-in for BookingServiceClient."""

    def __init__(
        self,
        seats: Optional[List[SeatCoordinate]] = None,
        claim_outcome: AttemptOutcome = AttemptOutcome.SUCCESS,
        claim_outcomes: Optional[List[AttemptOutcome]] = None,
        permission_status: int = 200,
        confirm_status: int = 201,
        remove_claimed: bool = True,
        user_num: int = 1,
    ):
        self.user_num = user_num
        self.available = list(seats or [])
        self.claim_outcome = claim_outcome
        self.claim_outcomes = list(claim_outcomes or [])
        self.permission_status = permission_status
        self.confirm_status = confirm_status
        self.remove_claimed = remove_claimed
        self.calls = []
        self.seat_grid = None
        self.ws = None

    def _result(self, action: BookingAction, status: int, success: bool) -> ActionResult:
        return ActionResult(action=action, status_code=status, latency_ms=1.0, success=success, user_num=self.user_num)

    def calls_named(self, name: str) -> list:
        return [call for call in self.calls if call[0] == name]

    async def login(self, login_id: str, password: str) -> ActionResult:
        self.calls.append(("login", login_id, password))
        return self._result(BookingAction.LOGIN, 200, True)

    async def check_permission(self) -> ActionResult:
        self.calls.append(("check_permission",))
        status = self.permission_status
        return self._result(BookingAction.CHECK_PERMISSION, status, status in (200, 304))

    async def set_booking_amount(self, amount: int) -> ActionResult:
        self.calls.append(("set_booking_amount", amount))
        return self._result(BookingAction.SET_BOOKING_AMOUNT, 200, True)

    async def fetch_seat_status(self):
        self.calls.append(("fetch_seat_status",))
        if isinstance(self.seat_grid, Exception):
            raise self.seat_grid
        return self.seat_grid

    async def open_seat_stream(self):
        self.calls.append(("open_seat_stream",))
        return self.ws

    async def claim_seat(self, seat: SeatCoordinate, expected_status: str) -> BookingAttemptResult:
        self.calls.append(("claim_seat", seat, expected_status))
        outcome = self.claim_outcomes.pop(0) if self.claim_outcomes else self.claim_outcome
        if outcome is AttemptOutcome.SUCCESS and self.remove_claimed and seat in self.available:
            self.available.remove(seat)
        return BookingAttemptResult(outcome=outcome, seat=seat, status_code=_ATTEMPT_STATUS[outcome])

    async def confirm_reservation(self, seats_payload) -> ActionResult:
        self.calls.append(("confirm_reservation", seats_payload))
        status = self.confirm_status
        return self._result(BookingAction.CONFIRM_RESERVATION, status, status in (200, 201))


class ClientBackedTransport(SeatTransport):
    """Snapshots whatever the fake client currently lists as free."""

    def __init__(self, client: FakeBookingClient):
        super().__init__(client, encoding=None)
        self.refreshes = 0
        self.closed = False

    async def subscribe(self) -> List[SeatCoordinate]:
        return await self.refresh()

    async def refresh(self) -> List[SeatCoordinate]:
        self.refreshes += 1
        self._snapshot = list(self.client.available)
        return self._snapshot

    async def close(self):
        self.closed = True


class FakeWebSocket:
    """Just enough of aiohttp.ClientWebSocketResponse for SeatChannel."""

    def __init__(self):
        self.queue = asyncio.Queue()
        self.closed = False

    def push_text(self, text: str):
        self.queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text))

    def push_close(self):
        self.queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None))

    def push_error(self, error: Exception):
        self.queue.put_nowait(error)

    async def receive(self, timeout=None):
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True
        self.push_close()


class RecordingSleep:
    """Drop-in for asyncio.sleep that records instead of waiting."""

    def __init__(self):
        self.durations = []

    async def __call__(self, seconds: float):
        self.durations.append(seconds)
        await asyncio.sleep(0)


async def settle(rounds: int = 10):
    """Let background reader tasks catch up."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def seats():
    return [SeatCoordinate(0, i) for i in range(5)] + [SeatCoordinate(1, i) for i in range(5)]
