import unittest
from datetime import datetime, timezone

from gbfs_explorer.config import Settings
from gbfs_explorer.domain import CatalogListing, OperatorRecord, OperatorResult, NormalizedStatus, ResultState
from gbfs_explorer.errors import CityNotFoundError, ConfigurationError, StaleSelectionError
from gbfs_explorer.service import ExplorerService, SelectionTracker


def _record(system_id, name, location):
    return OperatorRecord(
        system_id=system_id,
        name=name,
        location=location,
        country_code="NO",
        discovery_url=f"https://gbfs.example/{system_id}/gbfs.json",
    )


SYSTEMS = [
    _record("1", "Oslo Bysykkel", "Oslo"),
    _record("2", "Voi Oslo", "Oslo"),
    _record("3", "Bergen Bysykkel", "Bergen"),
]


class FakeCatalog:
    def __init__(self, systems):
        self.systems = systems
        self.calls = []

    def list_operators(self, data_type="gbfs", force_refresh=False, limit=None):
        self.calls.append((data_type, force_refresh, limit))
        return CatalogListing(
            systems=self.systems,
            total_count=len(self.systems),
            last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc),
            cache_hit=False,
        )


class FakePipeline:
    """Return one successful result per operator with the given fleet sizes."""

    def __init__(self, fleets, during_run=None):
        self.fleets = fleets
        self.during_run = during_run

    def run(self, operators):
        if self.during_run:
            self.during_run()
        return [
            OperatorResult(
                operator=op,
                state=ResultState.SUCCESS,
                resolved_name=op.name,
                status=NormalizedStatus(
                    total_vehicles=self.fleets[op.system_id],
                    available_vehicles=0,
                    source_feed="vehicle_status",
                ),
            )
            for op in operators
        ]


class TestSelectionTracker(unittest.TestCase):
    def test_newer_selection_supersedes_older(self):
        tracker = SelectionTracker()
        first = tracker.begin("client", "Oslo")
        second = tracker.begin("client", "Bergen")
        self.assertFalse(tracker.is_current(first))
        self.assertTrue(tracker.is_current(second))
        self.assertEqual(tracker.active_city("client"), "Bergen")

    def test_reselecting_same_city_still_supersedes(self):
        tracker = SelectionTracker()
        first = tracker.begin("client", "Oslo")
        tracker.begin("client", "Oslo")
        self.assertFalse(tracker.is_current(first))

    def test_clients_are_independent(self):
        tracker = SelectionTracker()
        mine = tracker.begin("a", "Oslo")
        tracker.begin("b", "Bergen")
        self.assertTrue(tracker.is_current(mine))
        self.assertIsNone(tracker.active_city("c"))

    def test_finish_forgets_only_the_current_selection(self):
        tracker = SelectionTracker()
        first = tracker.begin("client", "Oslo")
        second = tracker.begin("client", "Bergen")
        tracker.finish(first)
        self.assertTrue(tracker.is_current(second))
        tracker.finish(second)
        self.assertIsNone(tracker.active_city("client"))
        self.assertEqual(len(tracker._active), 0)


class TestExplorerService(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(mapbox_access_token=None, mobility_database_refresh_token=None)
        self.service = ExplorerService(self.settings)
        self.service.catalog = FakeCatalog(SYSTEMS)
        self.service.pipeline = FakePipeline({"1": 12, "2": 40, "3": 7})

    def test_list_operators_uses_configured_data_type(self):
        self.service.list_operators(force_refresh=True, limit=3)
        self.assertEqual(self.service.catalog.calls, [("gbfs", True, 3)])

    def test_search_cities_needs_minimum_characters(self):
        self.assertEqual(self.service.search_cities("o"), [])
        self.assertEqual(self.service.catalog.calls, [])

    def test_search_cities_groups_matches(self):
        groups = self.service.search_cities("bysykkel")
        self.assertEqual([g.city for g in groups], ["Oslo", "Bergen"])
        self.assertEqual(groups[0].system_ids, ["1"])

    def test_select_city_sorts_and_totals(self):
        city = self.service.select_city("oslo")
        self.assertEqual(city.city, "Oslo")
        self.assertEqual(city.country_code, "NO")
        self.assertEqual([r.operator.system_id for r in city.results], ["2", "1"])
        self.assertEqual(city.total_vehicles, 52)

    def test_unknown_city(self):
        with self.assertRaises(CityNotFoundError) as ctx:
            self.service.select_city("Trondheim")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_superseded_selection_is_discarded(self):
        def newer_selection():
            self.service.selections.begin("client-1", "Bergen")

        self.service.pipeline = FakePipeline({"1": 1, "2": 2}, during_run=newer_selection)
        with self.assertRaises(StaleSelectionError) as ctx:
            self.service.select_city("Oslo", client_id="client-1")
        self.assertEqual(ctx.exception.status_code, 409)

    def test_other_clients_do_not_supersede(self):
        def other_client():
            self.service.selections.begin("client-2", "Bergen")

        self.service.pipeline = FakePipeline({"1": 1, "2": 2}, during_run=other_client)
        self.assertEqual(self.service.select_city("Oslo", client_id="client-1").total_vehicles, 3)
        self.assertIsNone(self.service.selections.active_city("client-1"))
        self.assertEqual(self.service.selections.active_city("client-2"), "Bergen")

    def test_finished_selections_do_not_accumulate(self):
        for n in range(50):
            self.service.select_city("Oslo", client_id=f"client-{n}")
        self.assertEqual(len(self.service.selections._active), 0)

    def test_superseding_selection_survives_the_stale_run(self):
        def newer_selection():
            self.service.selections.begin("client-1", "Bergen")

        self.service.pipeline = FakePipeline({"1": 1, "2": 2}, during_run=newer_selection)
        with self.assertRaises(StaleSelectionError):
            self.service.select_city("Oslo", client_id="client-1")
        self.assertEqual(self.service.selections.active_city("client-1"), "Bergen")

    def test_map_token(self):
        with self.assertRaises(ConfigurationError):
            self.service.map_token()
        configured = ExplorerService(Settings(mapbox_access_token="pk.abc"))
        self.assertEqual(configured.map_token(), "pk.abc")

    def test_service_wires_settings_into_clients(self):
        settings = Settings(
            feed_timeout_seconds=3,
            proxy_timeout_seconds=2,
            mobility_database_url="https://catalog.example/",
        )
        service = ExplorerService(settings)
        self.assertEqual(service.fetcher.timeout, 3)
        self.assertEqual(service.fetcher.single_timeout, 2)
        self.assertEqual(service.catalog.feeds_url, "https://catalog.example/v1/feeds")
        self.assertEqual(service.token_manager.token_url, "https://catalog.example/v1/tokens")
        self.assertIs(service.pipeline.fetcher, service.fetcher)


if __name__ == "__main__":
    unittest.main()
