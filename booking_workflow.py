"""
Per-user booking journey as an explicit state machine.

    CREATED -> (STAGGERED_WAIT) -> LOGGED_IN -> PERMISSION_CHECKED
        -> SUBSCRIBED -> BOOKING -> BOOKED_SEATS_FINALIZED
        -> CONFIRMED | SKIPPED

Any step may end the run in ABORTED instead. Aborts only ever affect the user
that hit them.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from booking_config import BookingConfig
from booking_errors import BookingTestError, FatalTransportError, PermissionDenied
from booking_loop import BookingRetryLoop, Sleeper
from seat_availability import SeatCoordinate, seats_to_payload
from seat_transport import SeatTransport
from skewed_delay import SECURE_RANDOM, RandDelay

logger = logging.getLogger(__name__)

RANDOM_BOOKING_AMOUNTS = (1, 2, 3, 4)


class WorkflowState(Enum):
    CREATED = "created"
    STAGGERED_WAIT = "staggered_wait"
    LOGGED_IN = "logged_in"
    PERMISSION_CHECKED = "permission_checked"
    SUBSCRIBED = "subscribed"
    BOOKING = "booking"
    BOOKED_SEATS_FINALIZED = "booked_seats_finalized"
    CONFIRMED = "confirmed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({WorkflowState.CONFIRMED, WorkflowState.SKIPPED, WorkflowState.ABORTED})


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class SessionState:
    """Mutable state of one virtual user. Never shared."""
    state: WorkflowState = WorkflowState.CREATED
    history: List[WorkflowState] = field(default_factory=list)
    before_staggered_login_wait: float = 0.0
    after_staggered_login_wait: float = 0.0
    available_seats: List[SeatCoordinate] = field(default_factory=list)
    selected_seat: Optional[SeatCoordinate] = None
    booked_seats: List[SeatCoordinate] = field(default_factory=list)
    seats_payload: Optional[List[Dict[str, int]]] = None
    abort_reason: Optional[str] = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: float = 0


def resolve_booking_amount(fixed_amount: int, rng: Optional[random.Random] = None) -> int:
    """Fixed amount, or a uniform pick from 1..4 when the configured value is negative."""
    if fixed_amount >= 0:
        return fixed_amount
    return (rng or SECURE_RANDOM).choice(RANDOM_BOOKING_AMOUNTS)


@dataclass
class VirtualUser:
    user_num: int
    booking_amount: int
    session: SessionState = field(default_factory=SessionState)

    @property
    def login_id(self) -> str:
        return f"test{self.user_num}"

    @property
    def password(self) -> str:
        return f"testpw{self.user_num}"

    @classmethod
    def create(cls, user_num: int, config: BookingConfig, rng: Optional[random.Random] = None) -> "VirtualUser":
        return cls(user_num=user_num, booking_amount=resolve_booking_amount(config.fixed_booking_amount, rng))


@dataclass(frozen=True)
class WorkflowStages:
    """
    Optional stages, resolved once per run. A None wait means the stage is
    switched off.
    """
    staggered_login_window_ms: Optional[int]
    between_actions_wait: Optional[float]
    after_subscribe_wait: Optional[float]
    confirm: bool

    @classmethod
    def from_config(cls, config: BookingConfig) -> "WorkflowStages":
        return cls(
            staggered_login_window_ms=(
                config.staggered_login_window_ms if config.enable_staggered_login else None
            ),
            between_actions_wait=(
                config.waiting_between_actions_ms / 1000.0 if config.enable_waiting_between_actions else None
            ),
            after_subscribe_wait=(
                config.waiting_after_subscribe_ms / 1000.0 if config.enable_waiting_after_subscribe else None
            ),
            confirm=not config.enable_skip_confirm_reservations,
        )


@dataclass
class UserRunResult:
    """What one virtual user reports back to the engine."""
    user_num: int
    booking_amount: int
    final_state: WorkflowState
    booked_seats: List[SeatCoordinate]
    attempts_per_seat: List[int]
    conflicts: int
    duration: float
    abort_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.final_state is WorkflowState.ABORTED


# =============================================================================
# WORKFLOW
# =============================================================================

class UserWorkflow:
    """Drives one virtual user from login to confirmation."""

    def __init__(
        self,
        user: VirtualUser,
        client,
        transport: SeatTransport,
        config: BookingConfig,
        rng: Optional[random.Random] = None,
        sleep: Sleeper = asyncio.sleep,
        on_state: Optional[Callable[[VirtualUser, WorkflowState], None]] = None,
    ):
        self.user = user
        self.session = user.session
        self.client = client
        self.transport = transport
        self.config = config
        self.stages = WorkflowStages.from_config(config)
        self.rng = rng or SECURE_RANDOM
        self.sleep = sleep
        self.on_state = on_state
        self.booking_loop = BookingRetryLoop(
            client,
            transport,
            max_retries=config.max_retry_in_booking_conflict,
            expected_status=config.expected_seat_status,
            rng=self.rng,
            sleep=sleep,
            booked_seats=self.session.booked_seats,
        )
        self._transitions: Dict[WorkflowState, Callable[[], Awaitable[WorkflowState]]] = {
            WorkflowState.CREATED: self._login,
            WorkflowState.LOGGED_IN: self._check_permission,
            WorkflowState.PERMISSION_CHECKED: self._subscribe,
            WorkflowState.SUBSCRIBED: self._start_booking,
            WorkflowState.BOOKING: self._book_seats,
            WorkflowState.BOOKED_SEATS_FINALIZED: self._confirm,
        }

    def _enter(self, state: WorkflowState):
        self.session.state = state
        self.session.history.append(state)
        if self.on_state:
            self.on_state(self.user, state)

    async def _wait(self, seconds: Optional[float]):
        if seconds:
            await self.sleep(seconds)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _login(self) -> WorkflowState:
        window_ms = self.stages.staggered_login_window_ms
        if window_ms:
            self._enter(WorkflowState.STAGGERED_WAIT)
            before = RandDelay.staggered_login_waiting(window_ms, self.rng)
            self.session.before_staggered_login_wait = before
            self.session.after_staggered_login_wait = window_ms / 1000.0 - before
            await self._wait(before)

        result = await self.client.login(self.user.login_id, self.user.password)
        if not result.success:
            # not a gate on its own; the permission check decides
            logger.debug("User %d login failed: HTTP %d", self.user.user_num, result.status_code)

        await self._wait(self.session.after_staggered_login_wait)
        return WorkflowState.LOGGED_IN

    async def _check_permission(self) -> WorkflowState:
        await self._wait(RandDelay.after_login(self.rng))
        await self._wait(self.stages.between_actions_wait)

        result = await self.client.check_permission()
        if result.status_code == 0:
            raise FatalTransportError(result.error or "permission check failed")
        if not result.success:
            raise PermissionDenied(
                f"no booking permission for event {self.config.target_event}",
                status_code=result.status_code,
            )
        return WorkflowState.PERMISSION_CHECKED

    async def _subscribe(self) -> WorkflowState:
        await self._wait(RandDelay.before_booking_amount_set(self.rng))
        result = await self.client.set_booking_amount(self.user.booking_amount)
        if not result.success:
            logger.debug("User %d booking amount rejected: HTTP %d", self.user.user_num, result.status_code)

        self.session.available_seats = await self.transport.subscribe()
        await self._wait(self.stages.after_subscribe_wait)
        return WorkflowState.SUBSCRIBED

    async def _start_booking(self) -> WorkflowState:
        return WorkflowState.BOOKING

    async def _book_seats(self) -> WorkflowState:
        try:
            await self.booking_loop.book_seats(self.user.booking_amount)
        finally:
            self.session.selected_seat = self.booking_loop.selected_seat
            self.session.available_seats = self.transport.current

        self.session.seats_payload = seats_to_payload(self.session.booked_seats)
        return WorkflowState.BOOKED_SEATS_FINALIZED

    async def _confirm(self) -> WorkflowState:
        if not self.session.seats_payload:
            return WorkflowState.SKIPPED

        await self._wait(self.stages.between_actions_wait)
        if not self.stages.confirm:
            return WorkflowState.SKIPPED

        await self._wait(RandDelay.before_confirm_reservation(self.rng))
        result = await self.client.confirm_reservation(self.session.seats_payload)
        if not result.success:
            raise FatalTransportError(
                result.error or f"reservation rejected with HTTP {result.status_code}",
                status_code=result.status_code,
            )
        return WorkflowState.CONFIRMED

    # =========================================================================
    # DRIVER
    # =========================================================================

    def _abort(self, error: BookingTestError):
        self.session.abort_reason = error.reason
        self.session.error = str(error)
        logger.info("User %d aborted in %s: %s", self.user.user_num, self.session.state.value, error)
        self._enter(WorkflowState.ABORTED)

    async def run(self) -> UserRunResult:
        """Run the journey to a terminal state. The transport is closed on every exit path."""
        self.session.started_at = time.time()
        self._enter(WorkflowState.CREATED)
        try:
            state = WorkflowState.CREATED
            while state not in TERMINAL_STATES:
                state = await self._transitions[state]()
                self._enter(state)
        except BookingTestError as e:
            self._abort(e)
        finally:
            await self.transport.close()
            self.session.finished_at = time.time()

        return UserRunResult(
            user_num=self.user.user_num,
            booking_amount=self.user.booking_amount,
            final_state=self.session.state,
            booked_seats=list(self.session.booked_seats),
            attempts_per_seat=list(self.booking_loop.attempt_counts),
            conflicts=self.booking_loop.conflicts,
            duration=self.session.finished_at - self.session.started_at,
            abort_reason=self.session.abort_reason,
            error=self.session.error,
        )
