import unittest

from gbfs_explorer.discovery import parse_discovery


class TestParseDiscovery(unittest.TestCase):
    def test_language_keyed_document(self):
        doc = {"en": {"name": "X", "feeds": [{"name": "station_status", "url": "u"}]}}
        feeds, name = parse_discovery(doc, "Fallback")
        self.assertEqual(feeds, {"station_status": "u"})
        self.assertEqual(name, "X")

    def test_root_level_feed_list(self):
        doc = {"feeds": [{"name": "station_status", "url": "u"}]}
        feeds, name = parse_discovery(doc, "Fallback")
        self.assertEqual(feeds, {"station_status": "u"})
        self.assertEqual(name, "Fallback")

    def test_empty_document(self):
        self.assertEqual(parse_discovery({}, "Fallback"), ({}, "Fallback"))

    def test_data_envelope_is_unwrapped(self):
        doc = {
            "last_updated": 1700000000,
            "ttl": 0,
            "data": {"en": {"feeds": [{"name": "vehicle_status", "url": "https://x/vs.json"}]}},
        }
        feeds, name = parse_discovery(doc, "Fallback")
        self.assertEqual(feeds, {"vehicle_status": "https://x/vs.json"})
        self.assertEqual(name, "Fallback")

    def test_gbfs3_flat_data_layout(self):
        doc = {"version": "3.0", "data": {"feeds": [{"name": "vehicle_status", "url": "v"}]}}
        feeds, _name = parse_discovery(doc, "Fallback")
        self.assertEqual(feeds, {"vehicle_status": "v"})

    def test_priority_language_wins_over_others(self):
        doc = {"data": {
            "fr": {"feeds": [{"name": "station_status", "url": "fr"}]},
            "nb": {"feeds": [{"name": "station_status", "url": "nb"}]},
        }}
        feeds, _name = parse_discovery(doc, "Fallback")
        self.assertEqual(feeds, {"station_status": "nb"})

    def test_language_with_empty_feed_list_is_skipped(self):
        doc = {"data": {
            "en": {"feeds": []},
            "de": {"name": "Stadtrad", "feeds": [{"name": "station_status", "url": "de"}]},
        }}
        self.assertEqual(parse_discovery(doc, "Fallback"), ({"station_status": "de"}, "Stadtrad"))

    def test_entries_without_string_name_and_url_are_ignored(self):
        doc = {"en": {"feeds": [
            {"name": "station_status"},
            {"name": 3, "url": "u"},
            {"name": "system_information", "url": "si"},
            "garbage",
        ]}}
        feeds, _name = parse_discovery(doc, "Fallback")
        self.assertEqual(feeds, {"system_information": "si"})

    def test_non_dict_input_never_raises(self):
        self.assertEqual(parse_discovery(None, "F"), ({}, "F"))
        self.assertEqual(parse_discovery(["feeds"], "F"), ({}, "F"))
        self.assertEqual(parse_discovery({"data": "oops"}, "F"), ({}, "F"))


if __name__ == "__main__":
    unittest.main()
