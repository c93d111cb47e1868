"""
tests/test_api_routes.py — FastAPI Route Integration Tests
===========================================================
Drives the HTTP boundary with the TestClient against the in-memory
database: bearer-token identity, error-to-status mapping, unit query
handling, and the main bike/part flows end to end.
"""

from __future__ import annotations

import pytest
from conftest import ALICE, BOB, auth

from bikeledger.api.main import status_for
from bikeledger.errors import (
    ConflictNotActive,
    InvalidDistance,
    InvalidTransfer,
    NotInstalled,
    NotOwner,
    StoreConflict,
    StoreUnavailable,
    UnknownUser,
)


def _create_bike(client, user: str = ALICE, **body) -> dict:
    payload = {"name": "Commuter", "type": "hybrid"}
    payload.update(body)
    resp = client.post("/api/bikes", json=payload, headers=auth(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _create_part(client, user: str = ALICE, **body) -> dict:
    payload = {"name": "Chain A", "type": "chain"}
    payload.update(body)
    resp = client.post("/api/parts", json=payload, headers=auth(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealthAndAuth:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_missing_token(self, client):
        assert client.get("/api/bikes").status_code == 401

    def test_garbage_token(self, client):
        resp = client.get("/api/bikes", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_first_request_mirrors_identity(self, client):
        """A fresh identity can receive transfers once it has made a request."""
        bike = _create_bike(client)
        client.get("/api/bikes", headers=auth("user-newcomer"))
        resp = client.post(
            f"/api/bikes/{bike['id']}/transfer",
            json={"new_owner_id": "user-newcomer"},
            headers=auth(),
        )
        assert resp.status_code == 200
        assert resp.json()["bike"]["owner_id"] == "user-newcomer"


class TestStatusMapping:

    @pytest.mark.parametrize("exc, status", [
        (InvalidDistance("bad"), 400),
        (InvalidTransfer("self"), 400),
        (NotOwner("gone"), 404),
        (UnknownUser("who"), 404),
        (ConflictNotActive("no"), 409),
        (NotInstalled("no"), 409),
        (StoreConflict("busy"), 503),
        (StoreUnavailable("down"), 503),
    ])
    def test_status_for(self, exc, status):
        assert status_for(exc) == status


class TestBikeRoutes:

    def test_create_and_fetch(self, client):
        bike = _create_bike(client, initial_kilometrage=100)
        assert bike["total_kilometrage"] == 100
        assert bike["unit"] == "km"

        resp = client.get(f"/api/bikes/{bike['id']}", headers=auth())
        assert resp.status_code == 200
        assert resp.json()["installed_parts"] == []

    def test_miles_in_and_out(self, client):
        bike = _create_bike(client, initial_kilometrage=10)
        resp = client.get(f"/api/bikes/{bike['id']}?unit=mi", headers=auth())
        assert resp.json()["total_kilometrage"] == pytest.approx(6.21371)

    def test_bad_unit_is_400(self, client):
        resp = client.get("/api/bikes?unit=parsecs", headers=auth())
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_enum"

    def test_invalid_type_is_400(self, client):
        resp = client.post(
            "/api/bikes", json={"name": "X", "type": "spaceship"}, headers=auth()
        )
        assert resp.status_code == 400
        assert "road" in resp.json()["details"]["allowed"]

    def test_foreign_bike_is_404(self, client):
        bike = _create_bike(client)
        assert client.get(f"/api/bikes/{bike['id']}", headers=auth(BOB)).status_code == 404
        assert client.get("/api/bikes/does-not-exist", headers=auth(BOB)).status_code == 404

    def test_patch_and_delete(self, client):
        bike = _create_bike(client)
        resp = client.patch(
            f"/api/bikes/{bike['id']}", json={"brand": "Trek"}, headers=auth()
        )
        assert resp.status_code == 200
        assert resp.json()["brand"] == "Trek"
        assert resp.json()["name"] == "Commuter"

        assert client.delete(f"/api/bikes/{bike['id']}", headers=auth()).status_code == 204
        assert client.get(f"/api/bikes/{bike['id']}", headers=auth()).status_code == 404

    def test_list_with_parts(self, client):
        bike = _create_bike(client)
        part = _create_part(client)
        client.put(f"/api/bikes/{bike['id']}/parts/{part['id']}", headers=auth())

        resp = client.get("/api/bikes?include_parts=true", headers=auth())
        bikes = resp.json()["bikes"]
        assert [p["id"] for p in bikes[0]["installed_parts"]] == [part["id"]]


class TestLedgerFlow:

    def test_install_log_move_log(self, client):
        commuter = _create_bike(client, name="Commuter")
        gravel = _create_bike(client, name="Gravel", type="gravel")
        chain = _create_part(client)

        resp = client.put(f"/api/bikes/{commuter['id']}/parts/{chain['id']}", headers=auth())
        assert resp.status_code == 201
        assert resp.json()["active"] is True

        resp = client.post(
            f"/api/bikes/{commuter['id']}/kilometrage", json={"distance": 50}, headers=auth()
        )
        assert resp.status_code == 201
        assert resp.json()["updated_parts"][0]["total_kilometrage"] == 50

        client.put(f"/api/bikes/{gravel['id']}/parts/{chain['id']}", headers=auth())
        client.post(
            f"/api/bikes/{gravel['id']}/kilometrage", json={"distance": 20}, headers=auth()
        )

        assert client.get(
            f"/api/parts/{chain['id']}", headers=auth()
        ).json()["total_kilometrage"] == 70
        assert client.get(
            f"/api/bikes/{commuter['id']}", headers=auth()
        ).json()["total_kilometrage"] == 50
        installs = client.get(
            f"/api/parts/{chain['id']}/installations", headers=auth()
        ).json()["installations"]
        assert [i["bike_id"] for i in installs] == [gravel["id"], commuter["id"]]

    def test_zero_distance_is_400(self, client):
        bike = _create_bike(client)
        resp = client.post(
            f"/api/bikes/{bike['id']}/kilometrage", json={"distance": 0}, headers=auth()
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_distance"

    def test_remove_not_installed_is_409(self, client):
        bike = _create_bike(client)
        part = _create_part(client)
        resp = client.delete(f"/api/bikes/{bike['id']}/parts/{part['id']}", headers=auth())
        assert resp.status_code == 409

    def test_kilometrage_history_paging(self, client):
        bike = _create_bike(client)
        for distance in (1, 2, 3):
            client.post(
                f"/api/bikes/{bike['id']}/kilometrage",
                json={"distance": distance},
                headers=auth(),
            )
        resp = client.get(f"/api/bikes/{bike['id']}/kilometrage?limit=2", headers=auth())
        assert resp.status_code == 200
        assert len(resp.json()["entries"]) == 2

        too_big = client.get(f"/api/bikes/{bike['id']}/kilometrage?limit=501", headers=auth())
        assert too_big.status_code == 400


class TestActiveBikeRoutes:

    def test_activate_trip_deactivate(self, client):
        bike = _create_bike(client)

        assert client.get("/api/bikes/active", headers=auth()).json() == {"active_bike": None}
        no_trip = client.post(
            "/api/bikes/active/kilometrage", json={"distance": 5}, headers=auth()
        )
        assert no_trip.json() == {"recorded": False}

        assert client.post(f"/api/bikes/{bike['id']}/activate", headers=auth()).status_code == 200
        active = client.get("/api/bikes/active", headers=auth()).json()["active_bike"]
        assert active["id"] == bike["id"]

        trip = client.post(
            "/api/bikes/active/kilometrage", json={"distance": 5}, headers=auth()
        )
        assert trip.json()["recorded"] is True
        assert trip.json()["bike"]["total_kilometrage"] == 5

        resp = client.post(f"/api/bikes/{bike['id']}/deactivate", headers=auth())
        assert resp.status_code == 200
        again = client.post(f"/api/bikes/{bike['id']}/deactivate", headers=auth())
        assert again.status_code == 409


class TestMaintenanceStatsTransferRoutes:

    def test_maintenance_and_stats(self, client):
        part = _create_part(client, replacement_threshold=100, initial_kilometrage=150)
        resp = client.post(
            f"/api/parts/{part['id']}/maintenance",
            json={"maintenance_type": "cleaning", "description": "Degreased"},
            headers=auth(),
        )
        assert resp.status_code == 201
        assert resp.json()["subject_type"] == "part"

        records = client.get(f"/api/parts/{part['id']}/maintenance", headers=auth()).json()
        assert len(records["records"]) == 1

        stats = client.get(f"/api/parts/{part['id']}/stats", headers=auth()).json()
        assert stats["needs_replacement"] is True
        assert stats["days_since_last_maintenance"] == 0

        due = client.get("/api/parts/due", headers=auth()).json()["parts"]
        assert [p["id"] for p in due] == [part["id"]]

    def test_bike_stats_in_miles(self, client):
        bike = _create_bike(client, initial_kilometrage=100)
        stats = client.get(f"/api/bikes/{bike['id']}/stats?unit=mi", headers=auth()).json()
        assert stats["unit"] == "mi"
        assert stats["total_kilometrage"] == pytest.approx(62.1371)
        assert stats["kilometrage_since_last_maintenance"] == pytest.approx(62.1371)

    def test_transfer_bike_with_part(self, client):
        client.get("/api/bikes", headers=auth(BOB))
        bike = _create_bike(client)
        part = _create_part(client)
        client.put(f"/api/bikes/{bike['id']}/parts/{part['id']}", headers=auth())

        resp = client.post(
            f"/api/bikes/{bike['id']}/transfer", json={"new_owner_id": BOB}, headers=auth()
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["bike"]["owner_id"] == BOB
        assert [p["owner_id"] for p in body["transferred_parts"]] == [BOB]
        assert len(body["history"]) == 2

        assert client.get(f"/api/bikes/{bike['id']}", headers=auth()).status_code == 404
        trail = client.get(f"/api/bikes/{bike['id']}/ownership-history", headers=auth(BOB))
        assert trail.json()["history"][0]["previous_owner_id"] == ALICE

    def test_transfer_errors(self, client):
        bike = _create_bike(client)
        self_transfer = client.post(
            f"/api/bikes/{bike['id']}/transfer", json={"new_owner_id": ALICE}, headers=auth()
        )
        assert self_transfer.status_code == 400
        unknown = client.post(
            f"/api/bikes/{bike['id']}/transfer",
            json={"new_owner_id": "user-ghost"},
            headers=auth(),
        )
        assert unknown.status_code == 404
        assert unknown.json()["error"] == "unknown_user"

    def test_transfer_part_unmounts(self, client):
        client.get("/api/bikes", headers=auth(BOB))
        bike = _create_bike(client)
        part = _create_part(client)
        client.put(f"/api/bikes/{bike['id']}/parts/{part['id']}", headers=auth())

        resp = client.post(
            f"/api/parts/{part['id']}/transfer", json={"new_owner_id": BOB}, headers=auth()
        )
        assert resp.status_code == 200
        assert resp.json()["closed_installation"]["active"] is False
        assert client.get(f"/api/parts/{part['id']}/bike", headers=auth(BOB)).json() == {
            "bike": None
        }


class TestMalformedRequests:
    """Bodies and query parameters that fail parsing answer with a typed 400."""

    def test_empty_distance_body(self, client):
        bike = _create_bike(client)
        resp = client.post(f"/api/bikes/{bike['id']}/kilometrage", json={}, headers=auth())
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_distance"

    def test_non_numeric_distance(self, client):
        bike = _create_bike(client)
        resp = client.post(
            f"/api/bikes/{bike['id']}/kilometrage", json={"distance": "far"}, headers=auth()
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_distance"

    def test_malformed_logged_at(self, client):
        bike = _create_bike(client)
        resp = client.post(
            f"/api/bikes/{bike['id']}/kilometrage",
            json={"distance": 5, "logged_at": "yesterday"},
            headers=auth(),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    def test_maintenance_without_description(self, client):
        bike = _create_bike(client)
        resp = client.post(
            f"/api/bikes/{bike['id']}/maintenance",
            json={"maintenance_type": "cleaning"},
            headers=auth(),
        )
        assert resp.status_code == 400
        assert resp.json()["details"]["field"] == "description"

    def test_transfer_without_target(self, client):
        bike = _create_bike(client)
        resp = client.post(f"/api/bikes/{bike['id']}/transfer", json={}, headers=auth())
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    def test_body_that_is_not_an_object(self, client):
        bike = _create_bike(client)
        resp = client.post(
            f"/api/bikes/{bike['id']}/kilometrage", json=[1, 2, 3], headers=auth()
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "validation_error"
        assert body["details"]["errors"]

    def test_bad_query_parameter(self, client):
        bike = _create_bike(client)
        resp = client.get(f"/api/bikes/{bike['id']}/kilometrage?offset=-1", headers=auth())
        assert resp.status_code == 400
        assert resp.json()["details"]["fields"] == ["offset"]


class TestSettingsRoutes:

    def test_preference_applies_when_no_unit_given(self, client):
        bike = _create_bike(client, initial_kilometrage=100)

        resp = client.put("/api/settings", json={"units": "mi"}, headers=auth())
        assert resp.status_code == 200
        assert resp.json()["units"] == "mi"

        fetched = client.get(f"/api/bikes/{bike['id']}", headers=auth()).json()
        assert fetched["unit"] == "mi"
        assert fetched["total_kilometrage"] == pytest.approx(62.1371)

        explicit = client.get(f"/api/bikes/{bike['id']}?unit=km", headers=auth()).json()
        assert explicit["total_kilometrage"] == 100

    def test_preference_is_per_user(self, client):
        client.put("/api/settings", json={"units": "mi"}, headers=auth())
        client.get("/api/bikes", headers=auth(BOB))
        bob_bike = _create_bike(client, user=BOB, initial_kilometrage=100)
        assert bob_bike["unit"] == "km"
        assert bob_bike["total_kilometrage"] == 100

    def test_distance_input_uses_preference(self, client):
        client.put("/api/settings", json={"units": "mi"}, headers=auth())
        bike = _create_bike(client)
        resp = client.post(
            f"/api/bikes/{bike['id']}/kilometrage?unit=km", json={"distance": 10}, headers=auth()
        )
        assert resp.json()["bike"]["total_kilometrage"] == 10
        resp = client.post(
            f"/api/bikes/{bike['id']}/kilometrage", json={"distance": 10}, headers=auth()
        )
        # 10 km + 10 mi, reported in miles.
        assert resp.json()["bike"]["total_kilometrage"] == pytest.approx(16.2137, rel=1e-4)
        assert client.get(
            f"/api/bikes/{bike['id']}?unit=km", headers=auth()
        ).json()["total_kilometrage"] == pytest.approx(26.0934)

    def test_clearing_and_rejecting(self, client):
        client.put("/api/settings", json={"units": "mi"}, headers=auth())
        cleared = client.put("/api/settings", json={"units": None}, headers=auth())
        assert cleared.json() == {"active_bike_id": None, "units": None}

        bad = client.put("/api/settings", json={"units": "leagues"}, headers=auth())
        assert bad.status_code == 400
        assert bad.json()["error"] == "invalid_enum"


class TestPartPatchRoute:

    def test_threshold_is_read_in_request_unit(self, client):
        part = _create_part(client)
        resp = client.patch(
            f"/api/parts/{part['id']}?unit=mi",
            json={"replacement_threshold": 1000},
            headers=auth(),
        )
        assert resp.status_code == 200
        assert resp.json()["replacement_threshold_km"] == pytest.approx(1000, rel=1e-4)
        km = client.get(f"/api/parts/{part['id']}?unit=km", headers=auth()).json()
        assert km["replacement_threshold_km"] == pytest.approx(1609.34)
