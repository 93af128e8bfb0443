from datetime import datetime

import pytest

from rental_service import guarantors, ledger, stores
from rental_service.config import DEFAULT_REJECTION_REASON
from rental_service.errors import Conflict, InvalidInput, NotFound
from rental_service.models import GuarantorRequest


@pytest.fixture
async def booking_with_renter(make_user, make_car, make_booking):
    renter = await make_user()
    car = await make_car()
    booking = await make_booking(car, renter, datetime(2030, 1, 7), datetime(2030, 1, 9), "10:00", "10:00")
    return booking, renter


async def test_send_request_creates_pending(db, booking_with_renter, make_user):
    booking, renter = booking_with_renter
    backer = await make_user()

    request = await guarantors.send_request(db, booking.booking_id, f"  {backer.guarantor_code} ", "admin-1")
    assert request.status == "pending"
    assert request.user_id == renter.id
    assert request.guarantor_id == backer.id
    assert request.requested_by == "admin-1"


async def test_renter_cannot_guarantee_themselves(db, booking_with_renter):
    booking, renter = booking_with_renter
    with pytest.raises(InvalidInput):
        await guarantors.send_request(db, booking.booking_id, renter.guarantor_code, "admin")


async def test_unknown_booking_or_code(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    with pytest.raises(NotFound):
        await guarantors.send_request(db, "BK000000ZZZ", backer.guarantor_code, "admin")
    with pytest.raises(NotFound):
        await guarantors.send_request(db, booking.booking_id, "GR9999", "admin")
    with pytest.raises(InvalidInput):
        await guarantors.send_request(db, booking.booking_id, "   ", "admin")


async def test_duplicate_pending_request_conflicts(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")
    with pytest.raises(Conflict):
        await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")


async def test_cancelled_booking_refuses_requests(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    booking.status = "cancelled"
    await db.commit()
    with pytest.raises(InvalidInput):
        await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")


async def test_sixth_guarantor_is_refused(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    for _ in range(5):
        backer = await make_user()
        request = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")
        await guarantors.accept_request(db, request.id, backer.id)

    sixth = await make_user()
    with pytest.raises(Conflict):
        await guarantors.send_request(db, booking.booking_id, sixth.guarantor_code, "admin")


async def test_accept_is_terminal(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    request = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")

    accepted, outcome = await guarantors.accept_request(db, request.id, backer.id)
    assert accepted.status == "accepted"
    assert accepted.accepted_at is not None
    assert outcome.ok
    await db.refresh(booking)
    assert booking.guarantor_id == backer.id

    with pytest.raises(NotFound):
        await guarantors.accept_request(db, request.id, backer.id)
    with pytest.raises(NotFound):
        await guarantors.reject_request(db, request.id, backer.id)


async def test_only_the_invited_guarantor_can_answer(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    stranger = await make_user()
    request = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")

    with pytest.raises(NotFound):
        await guarantors.accept_request(db, request.id, stranger.id)


async def test_reject_uses_default_reason(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    request = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")

    rejected = await guarantors.reject_request(db, request.id, backer.id, reason="  ")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == DEFAULT_REJECTION_REASON
    assert rejected.rejected_at is not None

    # a rejected pair may be invited again
    again = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")
    assert again.status == "pending"


async def test_listings(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    other = await make_user()
    first = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")
    await guarantors.send_request(db, booking.booking_id, other.guarantor_code, "admin")
    await guarantors.reject_request(db, first.id, backer.id)

    mine = await guarantors.list_for_guarantor(db, backer.id)
    assert [r.id for r in mine] == [first.id]

    pending = await guarantors.list_all(db, status="pending")
    assert [r.guarantor_id for r in pending] == [other.id]
    assert len(await guarantors.list_all(db, booking_id=booking.booking_id)) == 2
    assert await guarantors.list_all(db, booking_id="BK-missing") == []


async def test_pending_invitations_count_towards_the_cap(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    for _ in range(5):
        backer = await make_user()
        await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")

    sixth = await make_user()
    with pytest.raises(Conflict):
        await guarantors.send_request(db, booking.booking_id, sixth.guarantor_code, "admin")


async def test_acceptance_beyond_five_guarantors_conflicts(db, booking_with_renter, make_user):
    booking, renter = booking_with_renter
    backers = [await make_user() for _ in range(6)]
    requests = []
    for backer in backers[:5]:
        requests.append(await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin"))
    # invited before the cap was enforced on open invitations
    extra = GuarantorRequest(
        booking_id=booking.id,
        user_id=renter.id,
        guarantor_id=backers[5].id,
        requested_by="admin",
        status="pending",
    )
    db.add(extra)
    await db.commit()

    for backer, request in zip(backers, requests):
        _, outcome = await guarantors.accept_request(db, request.id, backer.id)
        assert outcome.ok

    with pytest.raises(Conflict):
        await guarantors.accept_request(db, extra.id, backers[5].id)

    await db.refresh(extra)
    assert extra.status == "pending"
    entries = await stores.find_all_active_points(db, booking.id)
    assert [e.points_allocated for e in entries] == [20] * 5
    assert (await ledger.reallocate_booking(db, booking.id)).ok


async def test_accept_after_booking_cancelled_is_refused(db, booking_with_renter, make_user):
    booking, _ = booking_with_renter
    backer = await make_user()
    request = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")

    booking.status = "cancelled"
    await db.commit()

    with pytest.raises(InvalidInput):
        await guarantors.accept_request(db, request.id, backer.id)

    await db.refresh(request)
    assert request.status == "pending"
    assert await stores.find_points_for_booking(db, booking.id) == []
    await db.refresh(backer)
    assert backer.points == 0
