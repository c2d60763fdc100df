import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from subsync.canonical_json import CanonicalJsonTypeError, canonical_dumps, ensure_json_tree, json_clone


class TestCanonicalDumps(unittest.TestCase):
    def test_submission_keys_sorted(self) -> None:
        a = {"form": "f1", "data": {"b": 1, "a": 2}}
        b = {"data": {"a": 2, "b": 1}, "form": "f1"}
        self.assertEqual(canonical_dumps(a), canonical_dumps(b))
        self.assertEqual(canonical_dumps(a), '{"data":{"a":2,"b":1},"form":"f1"}')

    def test_external_ids_order_preserved(self) -> None:
        obj = {"externalIds": [{"id": "2"}, {"id": "1"}]}
        self.assertEqual(canonical_dumps(obj), '{"externalIds":[{"id":"2"},{"id":"1"}]}')

    def test_non_ascii_preserved(self) -> None:
        out = canonical_dumps({"data": {"city": "Zürich"}})
        self.assertIn("Zürich", out)
        self.assertNotIn("\\u", out)

    def test_reject_non_finite(self) -> None:
        for bad in (float("nan"), float("inf"), float("-inf")):
            with self.assertRaises(ValueError):
                canonical_dumps({"data": {"n": bad}})


class TestJsonTree(unittest.TestCase):
    def test_rejects_non_string_keys(self) -> None:
        with self.assertRaises(CanonicalJsonTypeError):
            ensure_json_tree({"data": {1: "x"}})

    def test_rejects_sets(self) -> None:
        with self.assertRaises(CanonicalJsonTypeError) as ctx:
            ensure_json_tree({"data": {"tags": {"a"}}})
        self.assertIn("$.data.tags", str(ctx.exception))

    def test_clone_is_detached(self) -> None:
        original = {"data": {"items": [1, 2]}}
        cloned = json_clone(original)
        cloned["data"]["items"].append(3)
        self.assertEqual(original["data"]["items"], [1, 2])

    def test_clone_turns_tuples_into_lists(self) -> None:
        self.assertEqual(json_clone({"pair": (1, 2)}), {"pair": [1, 2]})


if __name__ == "__main__":
    unittest.main()
