"""
HTTP/WebSocket adapter for the booking service under test.

One BookingServiceClient per virtual user. It owns no connection pool of its
own: the engine hands it an aiohttp.ClientSession whose cookie jar carries
that user's login session.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from booking_config import BookingConfig
from booking_errors import DecodeError, FatalTransportError
from seat_availability import SeatCoordinate, extract_seat_status


# =============================================================================
# ENUMS AND RESULT TYPES
# =============================================================================

class BookingAction(Enum):
    """Requests a virtual user makes against the booking service."""
    LOGIN = "login"
    CHECK_PERMISSION = "check_permission"
    SET_BOOKING_AMOUNT = "set_booking_amount"
    FETCH_SEAT_STATUS = "fetch_seat_status"
    OPEN_SEAT_STREAM = "open_seat_stream"
    CLAIM_SEAT = "claim_seat"
    CONFIRM_RESERVATION = "confirm_reservation"


EXPECTED_STATUS: Dict[BookingAction, Tuple[int, ...]] = {
    BookingAction.LOGIN: (200, 201),
    BookingAction.CHECK_PERMISSION: (200, 304),
    BookingAction.SET_BOOKING_AMOUNT: (200, 201),
    BookingAction.FETCH_SEAT_STATUS: (200,),
    BookingAction.CLAIM_SEAT: (200, 201),
    BookingAction.CONFIRM_RESERVATION: (200, 201),
}

CONFLICT_STATUS = 409


@dataclass
class ActionResult:
    """Result of one request."""
    action: BookingAction
    status_code: int
    latency_ms: float
    success: bool
    error: Optional[str] = None
    response_data: Optional[Any] = None
    user_num: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


class AttemptOutcome(Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    FATAL = "fatal"


@dataclass
class BookingAttemptResult:
    """Tagged outcome of claiming one seat."""
    outcome: AttemptOutcome
    seat: SeatCoordinate
    status_code: int = 0
    error: Optional[str] = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS

    @classmethod
    def from_action(cls, result: ActionResult, seat: SeatCoordinate) -> "BookingAttemptResult":
        if result.success:
            outcome = AttemptOutcome.SUCCESS
        elif result.status_code == CONFLICT_STATUS:
            outcome = AttemptOutcome.CONFLICT
        else:
            outcome = AttemptOutcome.FATAL
        return cls(outcome=outcome, seat=seat, status_code=result.status_code, error=result.error)


# =============================================================================
# CLIENT
# =============================================================================

class BookingServiceClient:
    """Booking service calls for a single virtual user."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: BookingConfig,
        user_num: Optional[int] = None,
        on_result: Optional[Callable[[ActionResult], None]] = None,
    ):
        self.session = session
        self.config = config
        self.user_num = user_num
        self.on_result = on_result
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "SeatBookingLoadTest/1.0",
        }

    async def _request(
        self,
        action: BookingAction,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        """Make one HTTP request and time it."""
        start = time.perf_counter()

        try:
            async with self.session.request(
                method,
                url,
                headers=self.headers,
                json=payload,
                ssl=self.config.verify_ssl,
            ) as response:
                body = await response.read()
                latency = (time.perf_counter() - start) * 1000

                response_data = None
                try:
                    response_data = json.loads(body) if body else None
                except ValueError:
                    pass

                result = ActionResult(
                    action=action,
                    status_code=response.status,
                    latency_ms=latency,
                    success=response.status in EXPECTED_STATUS[action],
                    response_data=response_data,
                    user_num=self.user_num,
                )

        except asyncio.TimeoutError:
            result = ActionResult(
                action=action,
                status_code=0,
                latency_ms=(time.perf_counter() - start) * 1000,
                success=False,
                error="Timeout",
                user_num=self.user_num,
            )
        except aiohttp.ClientError as e:
            result = ActionResult(
                action=action,
                status_code=0,
                latency_ms=(time.perf_counter() - start) * 1000,
                success=False,
                error=f"{type(e).__name__}: {str(e)[:50]}",
                user_num=self.user_num,
            )

        self._record(result)
        return result

    def _record(self, result: ActionResult):
        if self.on_result:
            self.on_result(result)

    # =========================================================================
    # BOOKING SERVICE OPERATIONS
    # =========================================================================

    async def login(self, login_id: str, password: str) -> ActionResult:
        return await self._request(
            BookingAction.LOGIN, "POST", self.config.url("login"),
            payload={"loginId": login_id, "loginPassword": password},
        )

    async def check_permission(self) -> ActionResult:
        return await self._request(BookingAction.CHECK_PERMISSION, "GET", self.config.url("permission"))

    async def set_booking_amount(self, amount: int) -> ActionResult:
        return await self._request(
            BookingAction.SET_BOOKING_AMOUNT, "POST", self.config.url("booking_amount"),
            payload={"bookingAmount": amount},
        )

    async def fetch_seat_status(self) -> Any:
        """
        Fetch the current seat-status grid for the target event.

        Raises:
            FatalTransportError: request failed or returned an error status
            DecodeError: response body carried no seat grid
        """
        result = await self._request(BookingAction.FETCH_SEAT_STATUS, "GET", self.config.url("seat_status"))
        if not result.success:
            raise FatalTransportError(
                result.error or f"seat status returned HTTP {result.status_code}",
                status_code=result.status_code,
            )
        if result.response_data is None:
            raise DecodeError("seat status response was not JSON")
        return extract_seat_status(result.response_data)

    async def open_seat_stream(self) -> aiohttp.ClientWebSocketResponse:
        """
        Open the push channel carrying seat-status updates.

        Raises:
            FatalTransportError: the websocket handshake failed
        """
        start = time.perf_counter()
        try:
            ws = await self.session.ws_connect(
                self.config.url("seat_stream"),
                ssl=self.config.verify_ssl,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._record(ActionResult(
                action=BookingAction.OPEN_SEAT_STREAM,
                status_code=getattr(e, "status", 0),
                latency_ms=(time.perf_counter() - start) * 1000,
                success=False,
                error=type(e).__name__,
                user_num=self.user_num,
            ))
            raise FatalTransportError(f"seat stream connect failed: {type(e).__name__}") from e

        self._record(ActionResult(
            action=BookingAction.OPEN_SEAT_STREAM,
            status_code=101,
            latency_ms=(time.perf_counter() - start) * 1000,
            success=True,
            user_num=self.user_num,
        ))
        return ws

    async def claim_seat(self, seat: SeatCoordinate, expected_status: str) -> BookingAttemptResult:
        result = await self._request(
            BookingAction.CLAIM_SEAT, "POST", self.config.url("claim_seat"),
            payload={
                "eventId": self.config.target_event,
                "sectionIndex": seat.section,
                "seatIndex": seat.seat,
                "expectedStatus": expected_status,
            },
        )
        return BookingAttemptResult.from_action(result, seat)

    async def confirm_reservation(self, seats_payload: List[Dict[str, int]]) -> ActionResult:
        return await self._request(
            BookingAction.CONFIRM_RESERVATION, "POST", self.config.url("confirm_reservation"),
            payload={"eventId": self.config.target_event, "seats": seats_payload},
        )
