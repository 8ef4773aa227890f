import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryBackend
from reference_resolver import JoinSpec, Lookup, ReferenceResolver, display_value
from view_model import decorate

VENDOR_NAME = JoinSpec("vendor_name", (Lookup("vendors", "vendor_id"),))
USER_NAME = JoinSpec(
    "user_name",
    (Lookup("couples", "user_id", match="user_id"),),
    alternates=((Lookup("vendors", "user_id", match="user_id"),),),
    placeholder="Unknown",
)
COUPLE_VIA_INVOICE = JoinSpec(
    "couple_name",
    (Lookup("invoices", "invoice_id"), Lookup("couples", "couple_id", display=("partner1_name", "partner2_name"))),
    placeholder="Unknown",
)


def _backend() -> MemoryBackend:
    backend = MemoryBackend()
    backend.seed(
        "vendors",
        [
            {"id": "v1", "name": "Bloom Florals", "user_id": "u2"},
            {"id": "v2", "name": "Lens & Light", "user_id": "u9"},
        ],
    )
    backend.seed(
        "couples",
        [
            {"id": "c1", "name": "Ana & Ben", "user_id": "u1", "partner1_name": "Ana", "partner2_name": "Ben"},
            {"id": "c2", "name": "Solo", "user_id": "u5", "partner1_name": "Cy", "partner2_name": None},
        ],
    )
    backend.seed("invoices", [{"id": "i1", "couple_id": "c1"}, {"id": "i2", "couple_id": "c2"}, {"id": "i3", "couple_id": "gone"}])
    return backend


class TestDisplayValue(unittest.TestCase):
    def test_single_and_joined_fields(self) -> None:
        self.assertEqual(display_value({"name": "A"}, ("name",)), "A")
        self.assertEqual(display_value({"a": "Ana", "b": "Ben"}, ("a", "b")), "Ana Ben")
        self.assertEqual(display_value({"a": "Ana", "b": None}, ("a", "b")), "Ana")
        self.assertIsNone(display_value({"a": "", "b": None}, ("a", "b")))
        self.assertIsNone(display_value(None, ("name",)))

    def test_alternates_must_share_key(self) -> None:
        with self.assertRaises(ValueError):
            JoinSpec("x", (Lookup("a", "k1"),), alternates=((Lookup("b", "k2"),),))


class TestResolveMany(unittest.IsolatedAsyncioTestCase):
    async def test_batches_identifiers_into_one_query(self) -> None:
        backend = _backend()
        rows = [{"id": "p1", "vendor_id": "v1"}, {"id": "p2", "vendor_id": "v2"}, {"id": "p3", "vendor_id": "v1"}, {"id": "p4", "vendor_id": None}]
        refs = await ReferenceResolver(backend).resolve_many(rows, [VENDOR_NAME])
        self.assertEqual(refs["vendor_name"], {"v1": "Bloom Florals", "v2": "Lens & Light"})
        self.assertEqual(backend.calls.count(("select", "vendors")), 1)
        views = [decorate(row, [VENDOR_NAME], refs) for row in rows]
        self.assertEqual([view["vendor_name"] for view in views], ["Bloom Florals", "Lens & Light", "Bloom Florals", "N/A"])

    async def test_alternate_source_and_placeholder(self) -> None:
        backend = _backend()
        rows = [{"id": "o1", "user_id": "u1"}, {"id": "o2", "user_id": "u2"}, {"id": "o3", "user_id": "u3"}]
        refs = await ReferenceResolver(backend).resolve_many(rows, [USER_NAME])
        views = [decorate(row, [USER_NAME], refs) for row in rows]
        self.assertEqual([view["user_name"] for view in views], ["Ana & Ben", "Bloom Florals", "Unknown"])

    async def test_two_hop_chain(self) -> None:
        backend = _backend()
        rows = [{"id": "pay1", "invoice_id": "i1"}, {"id": "pay2", "invoice_id": "i2"}, {"id": "pay3", "invoice_id": "i3"}]
        refs = await ReferenceResolver(backend).resolve_many(rows, [COUPLE_VIA_INVOICE])
        self.assertEqual(refs["couple_name"], {"i1": "Ana Ben", "i2": "Cy"})
        self.assertEqual(decorate(rows[2], [COUPLE_VIA_INVOICE], refs)["couple_name"], "Unknown")

    async def test_failed_lookup_degrades_to_placeholder(self) -> None:
        backend = _backend()
        backend.fail("select", "vendors")
        rows = [{"id": "p1", "vendor_id": "v1"}]
        with self.assertLogs("vowbook.resolver", level="WARNING"):
            refs = await ReferenceResolver(backend).resolve_many(rows, [VENDOR_NAME])
        self.assertEqual(refs["vendor_name"], {})
        self.assertEqual(decorate(rows[0], [VENDOR_NAME], refs)["vendor_name"], "N/A")


class TestResolveOne(unittest.IsolatedAsyncioTestCase):
    async def test_one_lookup_per_identifier(self) -> None:
        backend = _backend()
        record = {"id": "o1", "user_id": "u2", "vendor_id": "v2"}
        refs = await ReferenceResolver(backend).resolve_one(record, [USER_NAME, VENDOR_NAME])
        self.assertEqual(refs, {"user_name": {"u2": "Bloom Florals"}, "vendor_name": {"v2": "Lens & Light"}})

    async def test_chain_and_missing(self) -> None:
        backend = _backend()
        refs = await ReferenceResolver(backend).resolve_one({"id": "pay", "invoice_id": "i3"}, [COUPLE_VIA_INVOICE])
        self.assertEqual(refs, {"couple_name": {}})

    async def test_failure_is_isolated_per_join(self) -> None:
        backend = _backend()
        backend.fail("select", "vendors")
        record = {"id": "o1", "user_id": "u1", "vendor_id": "v1"}
        with self.assertLogs("vowbook.resolver", level="WARNING"):
            refs = await ReferenceResolver(backend).resolve_one(record, [USER_NAME, VENDOR_NAME])
        self.assertEqual(refs["user_name"], {"u1": "Ana & Ben"})
        self.assertEqual(refs["vendor_name"], {})


if __name__ == "__main__":
    unittest.main()
