"""
Run configuration for the seat-booking load test.

Defaults reproduce the reference run: event 1, three seats per user, logins
spread over four minutes, a one-minute pause between major actions and
confirmation turned off.
"""

import json
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

from seat_availability import SeatEncoding


class TransportMode(Enum):
    """How a virtual user learns about seat availability."""
    POLL = "poll"
    PUSH = "push"


@dataclass
class EndpointPaths:
    """Booking service routes, relative to base_url."""
    login: str = "/user/login"
    permission: str = "/booking/permission/{event_id}"
    booking_amount: str = "/booking/count"
    seat_status: str = "/booking/seats/{event_id}"
    seat_stream: str = "/benchmark/seat?eventId={event_id}"
    claim_seat: str = "/booking"
    confirm_reservation: str = "/reservation"


@dataclass
class BookingConfig:
    base_url: str = "http://localhost:8080"
    target_event: int = 1
    transport_mode: TransportMode = TransportMode.POLL

    # negative means a random amount in 1..4 per user
    fixed_booking_amount: int = 3
    boolean_seats_format: bool = False

    enable_staggered_login: bool = True
    staggered_login_window_ms: int = 240_000

    enable_waiting_between_actions: bool = True
    waiting_between_actions_ms: int = 60_000

    enable_waiting_after_subscribe: bool = False
    waiting_after_subscribe_ms: int = 5_000

    enable_skip_confirm_reservations: bool = True

    max_retry_in_booking_conflict: int = 50
    expected_seat_status: str = "reserved"

    ws_buffer_size: int = 1
    ws_first_message_timeout: float = 32.0
    request_timeout: float = 30.0
    verify_ssl: bool = True
    max_connections: int = 1000

    paths: EndpointPaths = field(default_factory=EndpointPaths)

    # injection profile steps, see booking_stress_test.parse_injection_profile
    injection: List[Dict[str, Any]] = field(default_factory=lambda: [{"type": "at_once", "users": 3}])

    @property
    def seat_encoding(self) -> SeatEncoding:
        return SeatEncoding.BOOLEAN if self.boolean_seats_format else SeatEncoding.BIT_FLAG

    @property
    def http_root(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def ws_root(self) -> str:
        parts = urlsplit(self.http_root)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))

    def url(self, path_key: str) -> str:
        path = getattr(self.paths, path_key).format(event_id=self.target_event)
        root = self.ws_root if path_key == "seat_stream" else self.http_root
        return f"{root}{path}"

    def validate(self) -> "BookingConfig":
        """Reject values no run could use. Returns self for chaining."""
        if not self.base_url:
            raise ValueError("base_url is required")
        if self.max_retry_in_booking_conflict < 1:
            raise ValueError("max_retry_in_booking_conflict must be at least 1")
        if self.enable_staggered_login and self.staggered_login_window_ms <= 0:
            raise ValueError("staggered_login_window_ms must be positive when staggered login is enabled")
        if self.ws_buffer_size < 1:
            raise ValueError("ws_buffer_size must be at least 1")
        for name in ("waiting_between_actions_ms", "waiting_after_subscribe_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        return self

    def with_overrides(self, **overrides: Any) -> "BookingConfig":
        """Copy with the given fields replaced; None values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "transport_mode" in changes:
            changes["transport_mode"] = TransportMode(changes["transport_mode"])
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookingConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        values = dict(data)
        if "transport_mode" in values:
            values["transport_mode"] = TransportMode(values["transport_mode"])
        if "paths" in values:
            values["paths"] = EndpointPaths(**values["paths"])
        return cls(**values)

    @classmethod
    def from_file(cls, path: str) -> "BookingConfig":
        """Load a JSON config file; missing keys keep their defaults."""
        return cls.from_dict(json.loads(Path(path).read_text()))


def load_config(path: Optional[str] = None, **overrides: Any) -> BookingConfig:
    config = BookingConfig.from_file(path) if path else BookingConfig()
    return config.with_overrides(**overrides).validate()
