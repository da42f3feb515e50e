"""
Optimistic seat acquisition with bounded retry.

Each attempt pauses, refreshes availability, picks a free seat at random and
tries to claim it. A conflict means someone else got there first, so the loop
goes round again with a fresh snapshot. Anything else is fatal.
"""

import asyncio
import logging
import random
from dataclasses import replace
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from booking_client import AttemptOutcome, BookingAttemptResult
from booking_errors import ConflictError, FatalTransportError, NoSeatsAvailable, RetryExhausted
from seat_availability import SeatCoordinate
from seat_transport import SeatTransport
from skewed_delay import SECURE_RANDOM, RandDelay

logger = logging.getLogger(__name__)

MAX_RETRIES = 50

Sleeper = Callable[[float], Awaitable[None]]


class AttemptState(Enum):
    PAUSING = "pausing"
    REFRESHING = "refreshing"
    SELECTING = "selecting"
    CLAIMING = "claiming"
    SUCCEEDED = "succeeded"
    CONFLICT_RETRY = "conflict_retry"
    ABORTED = "aborted"


class BookingRetryLoop:
    """Books seats one at a time for a single virtual user."""

    def __init__(
        self,
        client,
        transport: SeatTransport,
        max_retries: int = MAX_RETRIES,
        expected_status: str = "reserved",
        rng: Optional[random.Random] = None,
        sleep: Sleeper = asyncio.sleep,
        on_state: Optional[Callable[[AttemptState], None]] = None,
        booked_seats: Optional[List[SeatCoordinate]] = None,
    ):
        self.client = client
        self.transport = transport
        self.max_retries = max_retries
        self.expected_status = expected_status
        self.rng = rng or SECURE_RANDOM
        self.sleep = sleep
        self.on_state = on_state
        self.conflicts = 0
        self.attempt_counts: List[int] = []
        self.selected_seat: Optional[SeatCoordinate] = None
        self.booked_seats = booked_seats if booked_seats is not None else []

    def _enter(self, state: AttemptState):
        if self.on_state:
            self.on_state(state)

    async def _attempt(self) -> BookingAttemptResult:
        self._enter(AttemptState.PAUSING)
        await self.sleep(RandDelay.between_booking(self.rng))

        self._enter(AttemptState.REFRESHING)
        available = await self.transport.refresh()

        self._enter(AttemptState.SELECTING)
        # a stale push snapshot can still list seats this user already holds
        booked = set(self.booked_seats)
        candidates = [seat for seat in available if seat not in booked]
        if not candidates:
            self._enter(AttemptState.ABORTED)
            raise NoSeatsAvailable("no available seats")
        self.selected_seat = candidates[self.rng.randrange(len(candidates))]

        self._enter(AttemptState.CLAIMING)
        result = await self.client.claim_seat(self.selected_seat, self.expected_status)

        if result.outcome is AttemptOutcome.CONFLICT:
            self.conflicts += 1
            self._enter(AttemptState.CONFLICT_RETRY)
            raise ConflictError(f"seat {tuple(self.selected_seat)} already taken", status_code=result.status_code)
        if result.outcome is AttemptOutcome.FATAL:
            self._enter(AttemptState.ABORTED)
            raise FatalTransportError(
                result.error or f"claim returned HTTP {result.status_code}",
                status_code=result.status_code,
            )

        self._enter(AttemptState.SUCCEEDED)
        return result

    async def book_seat(self) -> BookingAttemptResult:
        """
        Claim one seat.

        Returns:
            The successful attempt, with ``attempts`` set to how many tries it took

        Raises:
            RetryExhausted: every one of max_retries attempts hit a conflict
            NoSeatsAvailable: the refreshed snapshot was empty
            FatalTransportError: the claim failed for a reason other than a conflict
        """
        last_conflict = None
        for attempt in range(1, self.max_retries + 1):
            try:
                result = await self._attempt()
            except ConflictError as e:
                last_conflict = e
                logger.debug("User %s conflict on attempt %d: %s", self.client.user_num, attempt, e)
                continue
            return replace(result, attempts=attempt)

        self._enter(AttemptState.ABORTED)
        raise RetryExhausted(self.max_retries) from last_conflict

    async def book_seats(self, amount: int) -> List[SeatCoordinate]:
        """
        Run book_seat ``amount`` times in sequence, appending each success to
        booked_seats. The first failure ends the whole sequence.
        """
        for _ in range(amount):
            result = await self.book_seat()
            self.booked_seats.append(result.seat)
            self.attempt_counts.append(result.attempts)
        return self.booked_seats

