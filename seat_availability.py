"""
Seat availability tracking.

The booking service reports seat status as a grid indexed [section][seat].
Depending on the deployment a cell is either a boolean (true = free) or an
integer flag (1 = free). Which one is in use is fixed by configuration.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, NamedTuple

from booking_errors import DecodeError

logger = logging.getLogger(__name__)


class SeatEncoding(Enum):
    """Wire encoding of a seat-status cell."""
    BOOLEAN = "boolean"
    BIT_FLAG = "bit_flag"


class SeatCoordinate(NamedTuple):
    section: int
    seat: int


def _is_available(cell: Any, encoding: SeatEncoding) -> bool:
    if encoding is SeatEncoding.BOOLEAN:
        if not isinstance(cell, bool):
            raise DecodeError(f"expected boolean seat cell, got {type(cell).__name__}")
        return cell

    # bool is an int subclass; a boolean grid under BIT_FLAG is a config mismatch
    if isinstance(cell, bool) or not isinstance(cell, int):
        raise DecodeError(f"expected integer seat cell, got {type(cell).__name__}")
    return cell == 1


def decode_seat_grid(grid: Any, encoding: SeatEncoding) -> List[SeatCoordinate]:
    """
    Scan a seat-status grid in row-major order and return the free seats.

    Raises:
        DecodeError: grid is not a list of lists or a cell does not match
            the encoding
    """
    if not isinstance(grid, list):
        raise DecodeError(f"seat status must be a list of sections, got {type(grid).__name__}")

    available = []
    for section_idx, section in enumerate(grid):
        if not isinstance(section, list):
            raise DecodeError(f"section {section_idx} is not a list")
        for seat_idx, cell in enumerate(section):
            if _is_available(cell, encoding):
                available.append(SeatCoordinate(section_idx, seat_idx))
    return available


def parse_available_seats(grid: Any, encoding: SeatEncoding) -> List[SeatCoordinate]:
    """Tolerant variant of decode_seat_grid: malformed input gives an empty list."""
    try:
        return decode_seat_grid(grid, encoding)
    except DecodeError as e:
        logger.warning("Seat status parse error: %s", e)
        return []


def extract_seat_status(payload: Any) -> Any:
    """
    Pull the seat grid out of a decoded response body.

    Accepts the push envelope {"data": {"seatStatus": ...}}, a flat
    {"seatStatus": ...} object, or a bare grid.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict) and "seatStatus" in data:
            return data["seatStatus"]
        if "seatStatus" in payload:
            return payload["seatStatus"]
    raise DecodeError("payload has no seatStatus field")


def parse_seat_status_message(text: str, encoding: SeatEncoding) -> List[SeatCoordinate]:
    """
    Decode one raw inbound message into the free seats it reports.

    Raises:
        DecodeError: message is not JSON or carries no usable grid
    """
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"invalid seat status message: {e}") from e
    return decode_seat_grid(extract_seat_status(payload), encoding)


def seats_to_payload(seats: List[SeatCoordinate]) -> List[Dict[str, int]]:
    """Serialize booked seats into the reservation request shape."""
    return [{"sectionIndex": s.section, "seatIndex": s.seat} for s in seats]
