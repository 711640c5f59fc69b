"""Tests de validación y almacenamiento de contribuciones ciudadanas."""

from datetime import datetime, timedelta

import pytest

from common.db import CONTRIBUTED_DATA
from smartair_api import ngsi
from smartair_api.services import ContributedDataService, validate_json, validate_payload
from smartair_api.services.contributions import ANONYMOUS, contributed_station, new_contribution_id

from conftest import make_entity


@pytest.fixture
def service(db) -> ContributedDataService:
    return ContributedDataService(db)


def recent_entity(station_id="station-hn01", hours_ago=1, **measurements):
    when = ngsi.utcnow() - timedelta(hours=hours_ago)
    return validate_payload(make_entity(station_id, when.strftime("%Y-%m-%dT%H:%M:%SZ"), **measurements)).data


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidation:
    def test_valid_object(self):
        result = validate_payload(make_entity())

        assert result.is_valid
        assert result.errors == []
        assert result.data["dateObserved"]["value"] == datetime(2025, 1, 1, 10, 0, 0)
        assert result.data[ngsi.OBSERVED_PROPERTY] == ngsi.relationship("AirQuality")
        assert result.documents == [result.data]

    def test_missing_everything(self):
        result = validate_payload({"foo": "bar"})

        assert not result.is_valid
        assert "type must be 'AirQualityObserved'" in result.errors
        assert "@context must be a non-empty array" in result.errors
        assert "dateObserved.value must be a string" in result.errors
        assert "location.value.coordinates must have at least 2 elements" in result.errors
        assert any(e.startswith("At least one measurement is required") for e in result.errors)

    def test_bad_date_and_coordinates(self):
        entity = make_entity(observed="31/12/2024")
        entity["location"]["value"]["coordinates"] = ["105", 21]

        errors = validate_payload(entity).errors
        assert "dateObserved.value must be an ISO 8601 date" in errors
        assert "location.value.coordinates must be numeric" in errors

    def test_array_keeps_valid_items_and_prefixes_errors(self):
        broken = make_entity()
        del broken["@context"]

        result = validate_payload([make_entity("station-a"), broken, make_entity("station-b")])

        assert result.is_valid
        assert len(result.data_list) == 2
        assert result.errors == ["Item 2: @context must be a non-empty array"]
        assert result.documents == result.data_list

    def test_single_item_array_uses_data_list(self):
        result = validate_payload([make_entity()])
        assert result.is_valid
        assert result.data is None
        assert len(result.data_list) == 1

    def test_all_items_invalid(self):
        result = validate_payload([{}, "x"])
        assert not result.is_valid
        assert any(e.startswith("Item 1:") for e in result.errors)
        assert "Item 2: Entity must be a JSON object" in result.errors

    def test_empty_array(self):
        result = validate_payload([])
        assert not result.is_valid
        assert result.errors == ["Array must contain at least one entity"]

    @pytest.mark.parametrize("payload", [42, "text", None])
    def test_scalar_payload(self, payload):
        assert not validate_payload(payload).is_valid

    def test_validate_json_syntax_error(self):
        result = validate_json("{not json")
        assert not result.is_valid
        assert result.errors[0].startswith("Invalid JSON")


# =============================================================================
# STORAGE
# =============================================================================

class TestContributedDataService:
    def test_insert_generates_id(self, service, db):
        doc = validate_payload(make_entity()).data
        del doc["id"]

        entity_id = service.insert(doc, "c1", "u1")

        assert entity_id.startswith(f"{ngsi.URN_PREFIX}:contributed:")
        stored = db[CONTRIBUTED_DATA].find_one({"id": entity_id})
        assert stored["contributionId"] == "c1"
        assert stored["userId"] == "u1"

    def test_insert_many_numbers_generated_ids(self, service):
        docs = validate_payload([make_entity(), make_entity("station-b")]).data_list
        for d in docs:
            del d["id"]

        ids = service.insert_many(docs, "c1")
        assert ids[0].endswith("-0")
        assert ids[1].endswith("-1")

    def test_insert_many_keeps_given_ids(self, service):
        ids = service.insert_many(validate_payload([make_entity("station-a")]).data_list, "c1")
        assert ids == [f"{ngsi.URN_PREFIX}:station-a:20250101100000"]

    def test_contributed_station(self):
        assert contributed_station({"id": f"{ngsi.URN_PREFIX}:station-a:1"}) == "station-a"
        assert contributed_station({"id": f"{ngsi.URN_PREFIX}:contributed:2025"}) is None
        assert contributed_station({}) is None

    def test_station_queries(self, service):
        service.insert_many(validate_payload([make_entity("Station-A"), make_entity("station-b")]).data_list, "c1")
        service.insert(validate_payload(make_entity("x", entity_id=f"{ngsi.URN_PREFIX}:contributed:x")).data, "c2")

        assert service.get_distinct_stations() == ["Station-A", "station-b"]
        assert len(service.get_by_station("station-a")) == 1

        info = service.get_stations_info()
        assert {i["stationId"] for i in info} == {"Station-A", "station-b"}
        assert info[0]["totalContributions"] == 1

    def test_by_contribution_id(self, service):
        service.insert_many(
            validate_payload([make_entity(observed=f"2025-01-0{d}T10:00:00Z") for d in range(1, 8)]).data_list,
            "c1",
        )
        latest = service.get_latest_n_by_contribution_id("c1")
        assert len(latest) == 5
        assert ngsi.date_observed_of(latest[0]) == datetime(2025, 1, 7, 10, 0)
        assert len(service.get_by_contribution_id("c1")) == 7
        assert service.get_by_contribution_id("missing") == []

    def test_contribution_ids_filtered_by_user(self, service):
        service.insert_many(validate_payload([make_entity(), make_entity("station-b")]).data_list, "c1", "u1")
        service.insert(validate_payload(make_entity("station-c")).data, "c2", "u2")

        mine = service.get_all_contribution_ids("u1")
        assert len(mine) == 1
        assert mine[0]["contributionId"] == "c1"
        assert mine[0]["recordCount"] == 2
        assert "userId" not in mine[0]

        assert len(service.get_all_contribution_ids()) == 2

    def test_public_summary(self, service):
        service.insert(recent_entity("station-a"), "c1", "u1")
        service.insert(recent_entity("station-b"), "c2", "u1")
        service.insert(recent_entity("station-c"), "c3", None)
        service.insert(recent_entity("station-d", hours_ago=24 * 10), "c4", "u2")

        summary = service.get_public_summary({"u1": "Lan"})

        assert summary["totalContributions"] == 3
        assert summary["totalContributors"] == 1
        by_name = {c["name"]: c for c in summary["contributors"]}
        assert by_name["Lan"]["recordCount"] == 2
        assert by_name["Lan"]["contributionCount"] == 2
        assert by_name[ANONYMOUS]["recordCount"] == 1

    def test_public_summary_uses_given_window(self, service):
        service.insert(recent_entity("station-a"), "c1", "u1")
        window = service.get_last_7_days()
        service.insert(recent_entity("station-b"), "c2", "u2")

        summary = service.get_public_summary({"u1": "Lan"}, window)

        assert summary["totalContributions"] == 1
        assert [c["name"] for c in summary["contributors"]] == ["Lan"]

    def test_new_contribution_ids_are_unique(self):
        assert new_contribution_id() != new_contribution_id()
