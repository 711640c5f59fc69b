"""Tests de AirQualityService y StationService sobre mongomock."""

from datetime import datetime
from unittest.mock import patch

import pytest

from common.db import AIR_QUALITY, EXTERNAL_MQTT_SOURCES, EXTERNAL_SOURCES, STATIONS
from smartair_api import ngsi
from smartair_api.services import AirQualityService, StationService
from smartair_api.services.stations import TYPE_EXTERNAL_HTTP, TYPE_EXTERNAL_MQTT, TYPE_MQTT, TYPE_OFFICIAL

from conftest import OFFICIAL_MAPPING, make_observation


@pytest.fixture
def stations(db) -> StationService:
    return StationService(db, OFFICIAL_MAPPING)


@pytest.fixture
def service(db, stations) -> AirQualityService:
    return AirQualityService(db, stations)


# =============================================================================
# AIR QUALITY
# =============================================================================

class TestInsert:
    def test_insert_fills_defaults(self, service, db):
        doc = service.insert({"pm25": ngsi.numeric_property(10, "GQ")})

        assert doc["type"] == ngsi.ENTITY_TYPE
        assert doc["id"].startswith(f"{ngsi.URN_PREFIX}:{ngsi.UNKNOWN_STATION}:")
        assert doc["@context"] == ngsi.default_context()
        assert isinstance(ngsi.date_observed_of(doc), datetime)
        assert doc[ngsi.OBSERVED_PROPERTY] == ngsi.relationship("AirQuality")
        assert db[AIR_QUALITY].count_documents({}) == 1

    def test_insert_creates_station_once(self, service, db):
        service.insert(make_observation("station-hn01"))
        service.insert(make_observation("station-hn01", datetime(2025, 1, 1, 11)))

        stored = list(db[STATIONS].find())
        assert len(stored) == 1
        assert stored[0]["stationId"] == "station-hn01"
        assert stored[0]["type"] == TYPE_MQTT
        assert stored[0]["name"] == "Hn01"
        assert stored[0]["latitude"] == pytest.approx(21.0285)

    def test_unknown_station_is_not_registered(self, service, db):
        service.insert({"pm25": ngsi.numeric_property(10, "GQ")})
        assert db[STATIONS].count_documents({}) == 0

    def test_station_failure_does_not_lose_observation(self, db):
        class BrokenStations:
            def exists(self, station_id):
                raise RuntimeError("stations down")

        service = AirQualityService(db, BrokenStations())
        service.insert(make_observation())
        assert db[AIR_QUALITY].count_documents({}) == 1


class TestQueries:
    @pytest.fixture(autouse=True)
    def seed(self, service):
        service.insert(make_observation("station-a", datetime(2025, 1, 1, 8), pm25=10))
        service.insert(make_observation("station-a", datetime(2025, 1, 1, 9), pm25=20, co=0.4))
        service.insert(make_observation("station-b", datetime(2025, 1, 2, 9), pm10=30))
        service.insert(make_observation("station-ab", datetime(2025, 1, 3, 9), pm10=30))

    def test_latest_is_newest_by_date_observed(self, service):
        assert ngsi.extract_station_id(service.get_latest()["id"]) == "station-ab"
        assert len(service.get_latest_n(2)) == 2

    def test_time_range_oldest_first_with_station_filter(self, service):
        docs = service.get_by_time_range(datetime(2025, 1, 1), datetime(2025, 1, 2, 23), "station-a")
        assert [ngsi.date_observed_of(d).hour for d in docs] == [8, 9]

        all_docs = service.get_by_time_range(datetime(2025, 1, 1), datetime(2025, 1, 2, 23))
        assert len(all_docs) == 3

    def test_time_range_station_filter_runs_in_query(self, service):
        with patch.object(service._collection, "find", wraps=service._collection.find) as find:
            docs = service.get_by_time_range(datetime(2025, 1, 1), datetime(2025, 1, 5), "station-a")

        query = find.call_args[0][0]
        assert query["id"]["$regex"].startswith("^urn:ngsi-ld:AirQualityObserved:station-a")
        assert len(docs) == 2

    def test_by_station_matches_exact_prefix(self, service):
        docs = service.get_by_station("station-a", 10)
        assert len(docs) == 2
        assert all(":station-a:" in d["id"] for d in docs)

    def test_distinct_stations(self, service):
        assert service.get_distinct_stations() == ["station-a", "station-ab", "station-b"]

    def test_stations_info(self, service):
        info = service.get_stations_info()
        first = info[0]
        assert first["stationId"] == "station-a"
        assert first["totalRecords"] == 2
        assert first["latestRecord"] == datetime(2025, 1, 1, 9)
        assert first["measuredParameters"] == ["PM2.5", "CO"]
        assert first["location"]["coordinates"] == [105.8542, 21.0285]


# =============================================================================
# STATIONS
# =============================================================================

class TestStationService:
    def test_official_stations_skip_missing_coordinates(self, stations):
        official = stations.get_all_stations(TYPE_OFFICIAL)
        assert [s["stationId"] for s in official] == ["station-hanoi-center"]
        assert official[0]["openAQLocationId"] == 4946811

    def test_merge_all_sources(self, stations, db):
        stations.create_station({"stationId": "station-hn01", "latitude": 21, "longitude": 105})
        db[EXTERNAL_SOURCES].insert_one({"name": "Ext", "stationId": "station-ext", "url": "u", "isActive": True})
        db[EXTERNAL_MQTT_SOURCES].insert_one({"name": "Roof", "stationId": "station-roof", "topic": "t"})

        by_id = {s["stationId"]: s for s in stations.get_all_stations()}
        assert by_id["station-hn01"]["type"] == TYPE_MQTT
        assert by_id["station-ext"]["type"] == TYPE_EXTERNAL_HTTP
        assert by_id["station-roof"]["type"] == TYPE_EXTERNAL_MQTT
        assert by_id["station-ext"]["metadata"]["url"] == "u"

    def test_first_source_wins_on_duplicate_id(self, stations, db):
        stations.create_station({"stationId": "station-hanoi-center", "name": "Stored", "type": TYPE_MQTT})
        station = stations.get_station_by_id("station-hanoi-center")
        assert station["type"] == TYPE_OFFICIAL
        assert station["name"] == "Hanoi Center"

    def test_unknown_type_filter_returns_everything(self, stations):
        assert len(stations.get_all_stations("bogus")) == len(stations.get_all_stations())

    def test_create_station_is_idempotent(self, stations, db):
        first = stations.create_station({"stationId": "station-x", "name": "X"})
        second = stations.create_station({"stationId": "station-x", "name": "Other"})
        assert "_id" not in first
        assert second["name"] == "X"
        assert db[STATIONS].count_documents({"stationId": "station-x"}) == 1

    def test_exists(self, stations):
        assert stations.exists("station-hanoi-center")
        assert not stations.exists("station-nowhere")
