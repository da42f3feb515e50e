import random

import pytest

from booking_client import AttemptOutcome
from booking_config import BookingConfig
from booking_workflow import (
    UserWorkflow,
    VirtualUser,
    WorkflowStages,
    WorkflowState,
    resolve_booking_amount,
)
from conftest import ClientBackedTransport, FakeBookingClient


def quiet_config(**overrides) -> BookingConfig:
    settings = {
        "enable_staggered_login": False,
        "enable_waiting_between_actions": False,
        "fixed_booking_amount": 3,
    }
    settings.update(overrides)
    return BookingConfig(**settings)


def make_workflow(client, config, rng, sleeper, user_num=1):
    user = VirtualUser.create(user_num, config, rng)
    transport = ClientBackedTransport(client)
    return UserWorkflow(user, client, transport, config, rng=rng, sleep=sleeper)


@pytest.mark.asyncio
async def test_permission_denied_aborts_before_booking(seats, rng, sleeper):
    client = FakeBookingClient(seats, permission_status=403)
    workflow = make_workflow(client, quiet_config(enable_skip_confirm_reservations=False), rng, sleeper)

    result = await workflow.run()

    assert result.final_state is WorkflowState.ABORTED
    assert result.aborted
    assert result.abort_reason == "permission_denied"
    assert client.calls_named("claim_seat") == []
    assert client.calls_named("confirm_reservation") == []
    assert workflow.transport.closed


@pytest.mark.asyncio
async def test_permission_transport_failure_is_fatal(seats, rng, sleeper):
    client = FakeBookingClient(seats, permission_status=0)
    result = await make_workflow(client, quiet_config(), rng, sleeper).run()
    assert result.abort_reason == "fatal_transport_error"


@pytest.mark.asyncio
async def test_not_modified_counts_as_permission(seats, rng, sleeper):
    client = FakeBookingClient(seats, permission_status=304)
    result = await make_workflow(client, quiet_config(), rng, sleeper).run()
    assert result.final_state is WorkflowState.SKIPPED


@pytest.mark.asyncio
async def test_confirmation_disabled_ends_skipped(seats, rng, sleeper):
    client = FakeBookingClient(seats)
    workflow = make_workflow(client, quiet_config(enable_skip_confirm_reservations=True), rng, sleeper)

    result = await workflow.run()

    assert result.final_state is WorkflowState.SKIPPED
    assert len(result.booked_seats) == 3
    assert client.calls_named("confirm_reservation") == []
    assert workflow.transport.closed


@pytest.mark.asyncio
async def test_confirmation_sends_booked_seats(seats, rng, sleeper):
    client = FakeBookingClient(seats)
    workflow = make_workflow(client, quiet_config(enable_skip_confirm_reservations=False), rng, sleeper)

    result = await workflow.run()

    assert result.final_state is WorkflowState.CONFIRMED
    [(_, payload)] = client.calls_named("confirm_reservation")
    assert payload == [{"sectionIndex": s.section, "seatIndex": s.seat} for s in result.booked_seats]
    assert workflow.session.seats_payload == payload
    # the last pause before confirming is the long deliberation delay
    assert 2.0 <= sleeper.durations[-1] < 10.0


@pytest.mark.asyncio
async def test_confirmation_rejected_aborts(seats, rng, sleeper):
    client = FakeBookingClient(seats, confirm_status=500)
    workflow = make_workflow(client, quiet_config(enable_skip_confirm_reservations=False), rng, sleeper)

    result = await workflow.run()

    assert result.final_state is WorkflowState.ABORTED
    assert result.abort_reason == "fatal_transport_error"
    assert len(result.booked_seats) == 3


@pytest.mark.asyncio
async def test_zero_seats_skips_confirmation(seats, rng, sleeper):
    client = FakeBookingClient(seats)
    config = quiet_config(fixed_booking_amount=0, enable_skip_confirm_reservations=False)

    result = await make_workflow(client, config, rng, sleeper).run()

    assert result.final_state is WorkflowState.SKIPPED
    assert result.booked_seats == []
    assert client.calls_named("claim_seat") == []
    assert client.calls_named("confirm_reservation") == []


@pytest.mark.asyncio
async def test_staggered_login_splits_window(seats, rng, sleeper):
    client = FakeBookingClient(seats)
    config = quiet_config(enable_staggered_login=True, staggered_login_window_ms=240_000)
    workflow = make_workflow(client, config, rng, sleeper)

    await workflow.run()

    session = workflow.session
    assert session.before_staggered_login_wait + session.after_staggered_login_wait == pytest.approx(240.0)
    assert sleeper.durations[0] == session.before_staggered_login_wait
    assert sleeper.durations[1] == session.after_staggered_login_wait
    assert session.history[:3] == [WorkflowState.CREATED, WorkflowState.STAGGERED_WAIT, WorkflowState.LOGGED_IN]


@pytest.mark.asyncio
async def test_between_actions_wait_applied(seats, rng, sleeper):
    client = FakeBookingClient(seats)
    config = quiet_config(enable_waiting_between_actions=True, waiting_between_actions_ms=60_000)

    await make_workflow(client, config, rng, sleeper).run()

    # once before the permission check, once before confirmation
    assert sleeper.durations.count(60.0) == 2


@pytest.mark.asyncio
async def test_after_subscribe_wait_applied(seats, rng, sleeper):
    client = FakeBookingClient(seats)
    config = quiet_config(enable_waiting_after_subscribe=True, waiting_after_subscribe_ms=5_000)

    await make_workflow(client, config, rng, sleeper).run()

    assert 5.0 in sleeper.durations


@pytest.mark.asyncio
async def test_retry_exhaustion_abandons_remaining_seats(seats, rng, sleeper):
    client = FakeBookingClient(
        seats,
        claim_outcomes=[AttemptOutcome.SUCCESS],
        claim_outcome=AttemptOutcome.CONFLICT,
    )
    config = quiet_config(max_retry_in_booking_conflict=4, enable_skip_confirm_reservations=False)

    result = await make_workflow(client, config, rng, sleeper).run()

    assert result.final_state is WorkflowState.ABORTED
    assert result.abort_reason == "retry_exhausted"
    assert len(result.booked_seats) == 1
    assert result.conflicts == 4
    assert len(client.calls_named("claim_seat")) == 5
    assert client.calls_named("confirm_reservation") == []


@pytest.mark.asyncio
async def test_no_seats_aborts_user(rng, sleeper):
    client = FakeBookingClient([])
    result = await make_workflow(client, quiet_config(), rng, sleeper).run()
    assert result.abort_reason == "no_seats_available"


@pytest.mark.asyncio
async def test_state_history_order(seats, rng, sleeper):
    client = FakeBookingClient(seats)
    seen = []
    config = quiet_config(enable_skip_confirm_reservations=False)
    user = VirtualUser.create(7, config, rng)
    workflow = UserWorkflow(
        user, client, ClientBackedTransport(client), config,
        rng=rng, sleep=sleeper, on_state=lambda u, s: seen.append((u.user_num, s)),
    )

    result = await workflow.run()

    expected = [
        WorkflowState.CREATED,
        WorkflowState.LOGGED_IN,
        WorkflowState.PERMISSION_CHECKED,
        WorkflowState.SUBSCRIBED,
        WorkflowState.BOOKING,
        WorkflowState.BOOKED_SEATS_FINALIZED,
        WorkflowState.CONFIRMED,
    ]
    assert workflow.session.history == expected
    assert seen == [(7, state) for state in expected]
    assert result.user_num == 7
    assert result.attempts_per_seat == [1, 1, 1]
    assert client.calls[0] == ("login", "test7", "testpw7")
    assert ("set_booking_amount", 3) in client.calls


def test_random_booking_amount_range():
    rng = random.Random(99)
    amounts = {resolve_booking_amount(-1, rng) for _ in range(500)}
    assert amounts == {1, 2, 3, 4}
    assert resolve_booking_amount(2, rng) == 2
    assert resolve_booking_amount(0, rng) == 0


def test_virtual_user_credentials(rng):
    user = VirtualUser.create(42, quiet_config(fixed_booking_amount=-1), rng)
    assert user.login_id == "test42"
    assert user.password == "testpw42"
    assert 1 <= user.booking_amount <= 4


def test_stages_resolved_from_config():
    stages = WorkflowStages.from_config(BookingConfig())
    assert stages.staggered_login_window_ms == 240_000
    assert stages.between_actions_wait == 60.0
    assert stages.after_subscribe_wait is None
    assert stages.confirm is False

    stages = WorkflowStages.from_config(quiet_config(enable_skip_confirm_reservations=False))
    assert stages.staggered_login_window_ms is None
    assert stages.between_actions_wait is None
    assert stages.confirm is True
