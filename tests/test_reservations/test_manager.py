"""Tests for ReservationManager."""

from datetime import datetime, timedelta

import pytest

from circulation.errors import (
    ConflictError,
    ConflictReason,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from circulation.reservations import ReservationStatus

NOW = datetime(2026, 3, 2, 10, 0, 0)


def pending_positions(reservations, book_id) -> list[int]:
    """Queue positions of a book's PENDING reservations, in queue order."""
    return [r.queue_position for r in reservations.get_queue(book_id)]


@pytest.fixture
def queue_of_four(reservations, make_member, book):
    """Four members queued for the same book, positions 1..4."""
    members = [make_member(name) for name in ("ann", "ben", "cat", "dan")]
    entries = [
        reservations.reserve(m.id, book.id, now=NOW + timedelta(minutes=i))
        for i, m in enumerate(members)
    ]
    return members, entries


class TestReserve:
    """Tests for joining a queue."""

    def test_reserve_first_in_queue(self, reservations, member, book):
        """Test the first reservation takes position 1."""
        reservation = reservations.reserve(member.id, book.id, now=NOW)

        assert reservation.id is not None
        assert reservation.member_id == member.id
        assert reservation.book_id == book.id
        assert reservation.queue_position == 1
        assert reservation.status == ReservationStatus.PENDING.value
        assert reservation.created_at == NOW
        assert reservation.expires_at is None

    def test_reserve_appends_to_queue(self, reservations, queue_of_four, book):
        """Test later members are appended at count + 1."""
        _, entries = queue_of_four
        assert [e.queue_position for e in entries] == [1, 2, 3, 4]

    def test_reserve_twice_conflicts(self, reservations, member, book):
        """Test a member cannot queue twice for the same book."""
        reservations.reserve(member.id, book.id)

        with pytest.raises(ConflictError) as exc_info:
            reservations.reserve(member.id, book.id)
        assert exc_info.value.reason == ConflictReason.ALREADY_RESERVED

    def test_reserve_while_ready_conflicts(self, reservations, member, book):
        """Test a member holding a pickup cannot queue again."""
        reservations.reserve(member.id, book.id)
        reservations.promote_next(book.id, now=NOW)

        with pytest.raises(ConflictError) as exc_info:
            reservations.reserve(member.id, book.id)
        assert exc_info.value.reason == ConflictReason.ALREADY_RESERVED

    def test_reserve_again_after_cancel(self, reservations, member, book):
        """Test a cancelled reservation does not block a new one."""
        first = reservations.reserve(member.id, book.id)
        reservations.cancel(first.id, member.id)

        second = reservations.reserve(member.id, book.id)
        assert second.queue_position == 1

    def test_reserve_different_books(self, reservations, member, make_book):
        """Test queues are independent per book."""
        first = reservations.reserve(member.id, make_book("One").id)
        second = reservations.reserve(member.id, make_book("Two").id)

        assert first.queue_position == 1
        assert second.queue_position == 1

    def test_reserve_no_depth_limit(self, reservations, make_member, book):
        """Test the queue accepts any number of members."""
        for i in range(12):
            reservations.reserve(make_member(f"reader{i}").id, book.id)
        assert pending_positions(reservations, book.id) == list(range(1, 13))

    def test_inactive_member_cannot_reserve(self, reservations, db, member, book):
        """Test deactivated members cannot join a queue."""
        db.set_member_active(member.id, False)

        with pytest.raises(ForbiddenError):
            reservations.reserve(member.id, book.id)
        assert reservations.has_active_demand(book.id) is False

    def test_reserve_unknown_member(self, reservations, book):
        """Test reserving for a member that does not exist."""
        with pytest.raises(NotFoundError) as exc_info:
            reservations.reserve("ghost", book.id)
        assert exc_info.value.entity == "Member"

    def test_reserve_unknown_book(self, reservations, member):
        """Test reserving a book that does not exist."""
        with pytest.raises(NotFoundError) as exc_info:
            reservations.reserve(member.id, "ghost")
        assert exc_info.value.entity == "Book"


class TestDemand:
    """Tests for has_active_demand."""

    def test_no_demand_without_reservations(self, reservations, book):
        """Test an empty queue has no demand."""
        assert reservations.has_active_demand(book.id) is False

    def test_demand_with_pending(self, reservations, member, book):
        """Test a PENDING reservation is demand."""
        reservations.reserve(member.id, book.id)
        assert reservations.has_active_demand(book.id) is True

    def test_pickup_hold_alone_is_not_demand(self, reservations, member, book):
        """Test only PENDING entries count as demand."""
        reservations.reserve(member.id, book.id)
        reservations.promote_next(book.id, now=NOW)
        assert reservations.has_active_demand(book.id) is False


class TestPromoteNext:
    """Tests for promoting the head of the queue."""

    def test_promote_lowest_position(self, reservations, queue_of_four, book):
        """Test the first in line becomes READY_FOR_PICKUP for 24 hours."""
        _, entries = queue_of_four

        promoted = reservations.promote_next(book.id, now=NOW)

        assert promoted.id == entries[0].id
        assert promoted.status == ReservationStatus.READY_FOR_PICKUP.value
        assert promoted.notified_at == NOW
        assert promoted.expires_at == NOW + timedelta(hours=24)

    def test_promote_renumbers_remaining(self, reservations, queue_of_four, book):
        """Test the rest of the queue moves up to 1..N."""
        _, entries = queue_of_four
        reservations.promote_next(book.id, now=NOW)

        queue = reservations.get_queue(book.id)
        assert [r.id for r in queue] == [e.id for e in entries[1:]]
        assert [r.queue_position for r in queue] == [1, 2, 3]

    def test_join_after_promotion_keeps_positions_unique(
        self, reservations, queue_of_four, make_member, book
    ):
        """Test a new member joins behind the renumbered queue."""
        reservations.promote_next(book.id, now=NOW)
        late = reservations.reserve(make_member("eve").id, book.id)

        assert late.queue_position == 4
        assert pending_positions(reservations, book.id) == [1, 2, 3, 4]

    def test_promote_empty_queue_is_noop(self, reservations, book):
        """Test nothing happens when nobody is waiting."""
        assert reservations.promote_next(book.id, now=NOW) is None
        assert reservations.get_ready_reservation(book.id) is None

    def test_promote_while_hold_outstanding_is_noop(self, reservations, queue_of_four, book):
        """Test a second promotion waits for the current hold to resolve."""
        _, entries = queue_of_four
        reservations.promote_next(book.id, now=NOW)

        again = reservations.promote_next(book.id, now=NOW + timedelta(hours=1))

        assert again is None
        assert reservations.get_ready_reservation(book.id).id == entries[0].id
        assert reservations.get_reservation(entries[1].id).status == (
            ReservationStatus.PENDING.value
        )
        assert pending_positions(reservations, book.id) == [1, 2, 3]

    def test_promote_honours_position_not_creation_time(self, reservations, make_member, book):
        """Test queue position, not created_at, decides who is next."""
        early = reservations.reserve(make_member("early").id, book.id, now=NOW)
        late = reservations.reserve(
            make_member("late").id, book.id, now=NOW - timedelta(days=1)
        )

        promoted = reservations.promote_next(book.id, now=NOW)

        assert late.created_at < early.created_at
        assert promoted.id == early.id


class TestCancel:
    """Tests for cancelling reservations."""

    def test_cancel_middle_closes_gap(self, reservations, queue_of_four, book):
        """Test cancelling position 2 of 4 maps {1,3,4} onto {1,2,3}."""
        members, entries = queue_of_four

        cancelled = reservations.cancel(entries[1].id, members[1].id)

        assert cancelled.status == ReservationStatus.CANCELLED.value
        remaining = {r.id: r.queue_position for r in reservations.get_queue(book.id)}
        assert remaining == {
            entries[0].id: 1,
            entries[2].id: 2,
            entries[3].id: 3,
        }

    def test_cancel_last_leaves_others(self, reservations, queue_of_four, book):
        """Test entries ahead of the cancelled one keep their positions."""
        members, entries = queue_of_four
        reservations.cancel(entries[3].id, members[3].id)
        assert pending_positions(reservations, book.id) == [1, 2, 3]
        assert [r.id for r in reservations.get_queue(book.id)] == [e.id for e in entries[:3]]

    def test_cancel_first_then_join(self, reservations, queue_of_four, make_member, book):
        """Test the queue stays contiguous across cancel and join."""
        members, entries = queue_of_four
        reservations.cancel(entries[0].id, members[0].id)
        reservations.cancel(entries[2].id, members[2].id)
        newcomer = reservations.reserve(make_member("eve").id, book.id)

        assert newcomer.queue_position == 3
        assert [r.id for r in reservations.get_queue(book.id)] == [
            entries[1].id,
            entries[3].id,
            newcomer.id,
        ]

    def test_cancel_not_owner(self, reservations, queue_of_four):
        """Test members cannot cancel someone else's reservation."""
        members, entries = queue_of_four

        with pytest.raises(ForbiddenError):
            reservations.cancel(entries[0].id, members[1].id)
        assert reservations.get_reservation(entries[0].id).status == (
            ReservationStatus.PENDING.value
        )

    def test_cancel_not_found(self, reservations, member):
        """Test cancelling an unknown reservation."""
        with pytest.raises(NotFoundError):
            reservations.cancel("missing", member.id)

    def test_cancel_twice(self, reservations, member, book):
        """Test a finished reservation cannot be cancelled again."""
        reservation = reservations.reserve(member.id, book.id)
        reservations.cancel(reservation.id, member.id)

        with pytest.raises(InvalidStateError):
            reservations.cancel(reservation.id, member.id)

    def test_cancel_pickup_hold_offers_next(self, reservations, queue_of_four, book):
        """Test giving up a pickup hold promotes the next member."""
        members, entries = queue_of_four
        reservations.promote_next(book.id, now=NOW)

        reservations.cancel(entries[0].id, members[0].id, now=NOW + timedelta(hours=2))

        ready = reservations.get_ready_reservation(book.id)
        assert ready.id == entries[1].id
        assert ready.expires_at == NOW + timedelta(hours=26)
        assert pending_positions(reservations, book.id) == [1, 2]


class TestProcessExpired:
    """Tests for the pickup expiry sweep."""

    def test_expire_and_promote_next(self, reservations, queue_of_four, book):
        """Test an uncollected hold expires and the next member is offered the book."""
        _, entries = queue_of_four
        reservations.promote_next(book.id, now=NOW)
        later = NOW + timedelta(hours=25)

        expired = reservations.process_expired(now=later)

        assert [r.id for r in expired] == [entries[0].id]
        assert reservations.get_reservation(entries[0].id).status == (
            ReservationStatus.EXPIRED.value
        )
        ready = reservations.get_ready_reservation(book.id)
        assert ready.id == entries[1].id
        assert ready.expires_at == later + timedelta(hours=24)
        assert pending_positions(reservations, book.id) == [1, 2]

    def test_hold_within_window_untouched(self, reservations, member, book):
        """Test holds are kept until the window has passed."""
        reservations.reserve(member.id, book.id)
        held = reservations.promote_next(book.id, now=NOW)

        assert reservations.process_expired(now=NOW + timedelta(hours=24)) == []
        assert reservations.get_reservation(held.id).status == (
            ReservationStatus.READY_FOR_PICKUP.value
        )

    def test_sweep_is_idempotent(self, reservations, queue_of_four, book):
        """Test a second run with nothing newly expired changes nothing."""
        reservations.promote_next(book.id, now=NOW)
        later = NOW + timedelta(hours=25)
        reservations.process_expired(now=later)

        before = {r.id: (r.status, r.queue_position) for r in reservations.get_queue(book.id)}
        ready_before = reservations.get_ready_reservation(book.id).id

        assert reservations.process_expired(now=later) == []
        after = {r.id: (r.status, r.queue_position) for r in reservations.get_queue(book.id)}
        assert after == before
        assert reservations.get_ready_reservation(book.id).id == ready_before

    def test_is_expired_tracks_window(self, reservations, member, book):
        """Test a hold reports expiry only once its window has passed."""
        reserved = reservations.reserve(member.id, book.id)
        assert reserved.is_expired(NOW + timedelta(days=30)) is False

        held = reservations.promote_next(book.id, now=NOW)
        assert held.is_expired(NOW + timedelta(hours=24)) is False
        assert held.is_expired(NOW + timedelta(hours=25)) is True

        expired = reservations.process_expired(now=NOW + timedelta(hours=25))
        assert expired[0].is_expired(NOW + timedelta(hours=25)) is False

    def test_sweep_with_no_holds(self, reservations):
        """Test sweeping an empty store is a no-op."""
        assert reservations.process_expired(now=NOW) == []
        assert reservations.process_expired(now=NOW) == []

    def test_expire_last_in_queue(self, reservations, member, book):
        """Test expiry with nobody behind leaves no hold."""
        reservations.reserve(member.id, book.id)
        reservations.promote_next(book.id, now=NOW)

        reservations.process_expired(now=NOW + timedelta(days=2))

        assert reservations.get_ready_reservation(book.id) is None
        assert reservations.has_active_demand(book.id) is False


class TestComplete:
    """Tests for fulfilling pickup holds."""

    def test_complete_ready_reservation(self, reservations, member, book):
        """Test a held reservation becomes FULFILLED."""
        reservation = reservations.reserve(member.id, book.id)
        reservations.promote_next(book.id, now=NOW)

        completed = reservations.complete(reservation.id)

        assert completed.status == ReservationStatus.FULFILLED.value
        assert reservations.get_user_reservations(member.id) == []

    def test_complete_pending_rejected(self, reservations, member, book):
        """Test only READY_FOR_PICKUP reservations can be fulfilled."""
        reservation = reservations.reserve(member.id, book.id)

        with pytest.raises(InvalidStateError):
            reservations.complete(reservation.id)

    def test_complete_missing(self, reservations):
        """Test fulfilling an unknown reservation."""
        with pytest.raises(NotFoundError):
            reservations.complete("missing")


class TestMemberQueries:
    """Tests for member reservation listings."""

    def test_user_reservations_active_newest_first(self, reservations, member, make_book):
        """Test active reservations are listed newest first."""
        old = reservations.reserve(member.id, make_book("Old").id, now=NOW)
        new = reservations.reserve(member.id, make_book("New").id, now=NOW + timedelta(hours=1))
        gone = reservations.reserve(
            member.id, make_book("Gone").id, now=NOW + timedelta(hours=2)
        )
        reservations.cancel(gone.id, member.id)

        active = reservations.get_user_reservations(member.id)
        assert [r.id for r in active] == [new.id, old.id]

    def test_all_reservations_include_history(self, reservations, member, make_book):
        """Test the full history includes finished reservations."""
        old = reservations.reserve(member.id, make_book("Old").id, now=NOW)
        gone = reservations.reserve(
            member.id, make_book("Gone").id, now=NOW + timedelta(hours=2)
        )
        reservations.cancel(gone.id, member.id)

        history = reservations.get_all_reservations(member.id)
        assert [r.id for r in history] == [gone.id, old.id]
        assert history[0].status == ReservationStatus.CANCELLED.value

    def test_reservations_carry_book(self, reservations, member, book):
        """Test listed reservations can be displayed after the session closes."""
        reservations.reserve(member.id, book.id)
        listed = reservations.get_user_reservations(member.id)
        assert listed[0].book.title == book.title
        assert listed[0].member.username == member.username
