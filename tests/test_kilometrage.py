"""
tests/test_kilometrage.py — Kilometrage Ledger & Active Bike
=============================================================
Distance logging with the part cascade, paging of the log, and the
per-user active bike used by trip recording.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import ALICE, BOB, make_bike, make_part
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bikeledger.database.models import KilometrageLogEntry
from bikeledger.engine.units import Unit
from bikeledger.errors import ConflictNotActive, InvalidDistance, NotOwner, ValidationError
from bikeledger.services import (
    active_bike_service,
    bike_service,
    installation_service,
    kilometrage_service,
    part_service,
)


def _km(engine, *, bike=None, part=None) -> float:
    if bike is not None:
        return bike_service.get_bike(engine, bike.id, requester_id=bike.owner_id).total_kilometrage
    return part_service.get_part(engine, part.id, requester_id=part.owner_id).total_kilometrage


class TestCascade:

    def test_part_moves_between_bikes(self, engine):
        """Chain follows the bike it is mounted on; old bike keeps its own total."""
        commuter = make_bike(engine, name="Commuter")
        gravel = make_bike(engine, name="Gravel", type="gravel")
        chain = make_part(engine, name="Chain A")

        installation_service.install_part(
            engine, part_id=chain.id, bike_id=commuter.id, requester_id=ALICE
        )
        kilometrage_service.log_distance(engine, commuter.id, requester_id=ALICE, distance=50)
        assert _km(engine, bike=commuter) == 50
        assert _km(engine, part=chain) == 50

        installation_service.install_part(
            engine, part_id=chain.id, bike_id=gravel.id, requester_id=ALICE
        )
        assert installation_service.get_installed_parts(
            engine, commuter.id, requester_id=ALICE
        ) == []

        kilometrage_service.log_distance(engine, gravel.id, requester_id=ALICE, distance=20)
        assert _km(engine, bike=gravel) == 20
        assert _km(engine, part=chain) == 70
        assert _km(engine, bike=commuter) == 50

    def test_removed_part_stops_accumulating(self, engine):
        bike = make_bike(engine)
        tyre = make_part(engine, name="Tyre", type="tires")
        installation_service.install_part(
            engine, part_id=tyre.id, bike_id=bike.id, requester_id=ALICE
        )
        kilometrage_service.log_distance(engine, bike.id, requester_id=ALICE, distance=10)
        installation_service.remove_part(
            engine, part_id=tyre.id, bike_id=bike.id, requester_id=ALICE
        )
        kilometrage_service.log_distance(engine, bike.id, requester_id=ALICE, distance=15)

        assert _km(engine, bike=bike) == 25
        assert _km(engine, part=tyre) == 10

    def test_result_reports_every_updated_row(self, engine):
        bike = make_bike(engine)
        parts = [make_part(engine, name=f"P{i}") for i in range(3)]
        for part in parts:
            installation_service.install_part(
                engine, part_id=part.id, bike_id=bike.id, requester_id=ALICE
            )

        result = kilometrage_service.log_distance(
            engine, bike.id, requester_id=ALICE, distance=12.5, notes="  Morning loop "
        )

        assert result.bike.total_kilometrage == 12.5
        assert sorted(p.id for p in result.parts) == sorted(p.id for p in parts)
        assert all(p.total_kilometrage == 12.5 for p in result.parts)
        assert result.entry.notes == "Morning loop"

    def test_miles_are_stored_as_km(self, engine):
        bike = make_bike(engine)
        result = kilometrage_service.log_distance(
            engine, bike.id, requester_id=ALICE, distance=10, unit=Unit.MI
        )
        assert result.entry.distance_km == pytest.approx(16.0934)
        payload = result.to_dict(Unit.MI)
        assert payload["entry"]["distance"] == pytest.approx(10)
        assert payload["bike"]["unit"] == "mi"


class TestInvalidDistance:

    @pytest.mark.parametrize("distance", [0, -4])
    def test_rejected_without_state_change(self, engine, distance):
        bike = make_bike(engine, initial_kilometrage=5)
        with pytest.raises(InvalidDistance):
            kilometrage_service.log_distance(
                engine, bike.id, requester_id=ALICE, distance=distance
            )
        assert _km(engine, bike=bike) == 5
        with Session(engine) as session:
            assert session.scalar(select(func.count()).select_from(KilometrageLogEntry)) == 0

    def test_other_user_cannot_log(self, engine):
        bike = make_bike(engine)
        with pytest.raises(NotOwner):
            kilometrage_service.log_distance(engine, bike.id, requester_id=BOB, distance=5)
        assert _km(engine, bike=bike) == 0


class TestHistory:

    def test_newest_first_with_paging(self, engine):
        bike = make_bike(engine)
        start = datetime(2026, 4, 1, tzinfo=UTC)
        for day in range(5):
            kilometrage_service.log_distance(
                engine, bike.id, requester_id=ALICE, distance=day + 1,
                logged_at=start + timedelta(days=day),
            )

        page = kilometrage_service.get_history(
            engine, bike.id, requester_id=ALICE, limit=2, offset=1
        )
        assert [e.distance_km for e in page] == [4, 3]

    def test_limit_bounds(self, engine):
        bike = make_bike(engine)
        with pytest.raises(ValidationError):
            kilometrage_service.get_history(engine, bike.id, requester_id=ALICE, limit=0)
        with pytest.raises(ValidationError):
            kilometrage_service.get_history(
                engine, bike.id, requester_id=ALICE, limit=11, max_page_size=10
            )
        with pytest.raises(ValidationError):
            kilometrage_service.get_history(engine, bike.id, requester_id=ALICE, offset=-1)

    def test_history_is_owner_scoped(self, engine):
        bike = make_bike(engine)
        with pytest.raises(NotOwner):
            kilometrage_service.get_history(engine, bike.id, requester_id=BOB)


class TestActiveBike:

    def test_none_selected_is_not_an_error(self, engine):
        assert active_bike_service.get_active(engine, user_id=ALICE) is None

    def test_set_returns_bike_with_parts(self, engine):
        bike = make_bike(engine)
        part = make_part(engine)
        installation_service.install_part(
            engine, part_id=part.id, bike_id=bike.id, requester_id=ALICE
        )

        active_bike_service.set_active(engine, user_id=ALICE, bike_id=bike.id)
        active = active_bike_service.get_active(engine, user_id=ALICE)

        assert active.bike.id == bike.id
        assert [p.id for p in active.parts] == [part.id]

    def test_selecting_another_bike_replaces_the_first(self, engine):
        first = make_bike(engine, name="First")
        second = make_bike(engine, name="Second")
        active_bike_service.set_active(engine, user_id=ALICE, bike_id=first.id)
        active_bike_service.set_active(engine, user_id=ALICE, bike_id=second.id)
        assert active_bike_service.get_active(engine, user_id=ALICE).bike.id == second.id

    def test_cannot_activate_someone_elses_bike(self, engine):
        bobs = make_bike(engine, owner_id=BOB)
        with pytest.raises(NotOwner):
            active_bike_service.set_active(engine, user_id=ALICE, bike_id=bobs.id)

    def test_deactivate(self, engine):
        bike = make_bike(engine)
        active_bike_service.set_active(engine, user_id=ALICE, bike_id=bike.id)
        active_bike_service.deactivate(engine, user_id=ALICE, bike_id=bike.id)
        assert active_bike_service.get_active(engine, user_id=ALICE) is None

    def test_deactivate_non_active_bike_conflicts(self, engine):
        active = make_bike(engine, name="Active")
        other = make_bike(engine, name="Other")
        active_bike_service.set_active(engine, user_id=ALICE, bike_id=active.id)
        with pytest.raises(ConflictNotActive):
            active_bike_service.deactivate(engine, user_id=ALICE, bike_id=other.id)
        assert active_bike_service.get_active(engine, user_id=ALICE).bike.id == active.id


class TestTripRecording:

    def test_logs_on_active_bike(self, engine):
        bike = make_bike(engine)
        part = make_part(engine)
        installation_service.install_part(
            engine, part_id=part.id, bike_id=bike.id, requester_id=ALICE
        )
        active_bike_service.set_active(engine, user_id=ALICE, bike_id=bike.id)

        result = kilometrage_service.log_distance_for_active_bike(
            engine, user_id=ALICE, distance=8
        )

        assert result.bike.id == bike.id
        assert _km(engine, part=part) == 8

    def test_no_active_bike_records_nothing(self, engine):
        make_bike(engine)
        assert kilometrage_service.log_distance_for_active_bike(
            engine, user_id=ALICE, distance=8
        ) is None
        with Session(engine) as session:
            assert session.scalar(select(func.count()).select_from(KilometrageLogEntry)) == 0

    def test_invalid_distance_checked_first(self, engine):
        with pytest.raises(InvalidDistance):
            kilometrage_service.log_distance_for_active_bike(engine, user_id=ALICE, distance=0)
