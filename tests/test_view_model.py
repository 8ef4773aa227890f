import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from reference_resolver import JoinSpec, Lookup
from view_model import decorate, decorate_all

VENUE = JoinSpec("venue_name", (Lookup("venues", "venue_id"),))
COUPLE = JoinSpec("couple_name", (Lookup("couples", "couple_id"),), placeholder="Unknown")


class TestDecorate(unittest.TestCase):
    def test_resolved_value_is_attached(self) -> None:
        record = {"id": "b1", "venue_id": "ven1"}
        view = decorate(record, [VENUE], {"venue_name": {"ven1": "Rose Hall"}})
        self.assertEqual(view["venue_name"], "Rose Hall")
        self.assertNotIn("venue_name", record)

    def test_placeholders(self) -> None:
        refs = {"venue_name": {"ven1": ""}, "couple_name": {}}
        self.assertEqual(decorate({"venue_id": None}, [VENUE], refs)["venue_name"], "N/A")
        self.assertEqual(decorate({"venue_id": "ven1"}, [VENUE], refs)["venue_name"], "N/A")
        self.assertEqual(decorate({"couple_id": "c9"}, [COUPLE], refs)["couple_name"], "Unknown")
        self.assertEqual(decorate({"couple_id": ["c1"]}, [COUPLE], refs)["couple_name"], "Unknown")

    def test_falsy_values_are_kept(self) -> None:
        view = decorate({"venue_id": "ven1"}, [VENUE], {"venue_name": {"ven1": 0}})
        self.assertEqual(view["venue_name"], 0)

    def test_missing_target_mapping(self) -> None:
        self.assertEqual(decorate({"venue_id": "ven1"}, [VENUE], {})["venue_name"], "N/A")

    def test_decorate_all_preserves_order(self) -> None:
        rows = [{"id": "2", "venue_id": "b"}, {"id": "1", "venue_id": "a"}]
        views = decorate_all(rows, [VENUE], {"venue_name": {"a": "A", "b": "B"}})
        self.assertEqual([(view["id"], view["venue_name"]) for view in views], [("2", "B"), ("1", "A")])


if __name__ == "__main__":
    unittest.main()
