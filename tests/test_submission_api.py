import os
import sys
import unittest
from unittest.mock import patch

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"

import app.main as main
from app.stores import MemoryFormStore, MemorySubmissionStore


def _fresh_handlers(max_child_requests: int = 5):
    return main.build_handlers(MemoryFormStore(), MemorySubmissionStore(), max_child_requests=max_child_requests)


class SubmissionApiCase(unittest.TestCase):
    max_child_requests = 5

    def setUp(self) -> None:
        patcher = patch.object(main, "handlers", _fresh_handlers(self.max_child_requests))
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = TestClient(main.app)

    def _form(self, **values) -> dict:
        res = self.client.post("/form", json=values)
        self.assertEqual(res.status_code, 201, res.text)
        return res.json()["form"]

    def _submissions(self, form_id: str) -> list:
        res = self.client.get(f"/form/{form_id}/submission")
        self.assertEqual(res.status_code, 200, res.text)
        return res.json()["submissions"]


class TestMirroring(SubmissionApiCase):
    def setUp(self) -> None:
        super().setUp()
        self.customer = self._form(title="Customer", type="resource")
        self.contact = self._form(
            title="Contact",
            actions=[
                {
                    "name": "save",
                    "settings": {
                        "resource": self.customer["_id"],
                        "property": "customer",
                        "fields": {"name": "firstName", "details.age": "age"},
                    },
                },
                {"name": "save"},
            ],
        )

    def test_create_mirrors_and_links(self) -> None:
        res = self.client.post(
            f"/form/{self.contact['_id']}/submission",
            json={"data": {"firstName": "Ada", "age": 36}},
        )
        self.assertEqual(res.status_code, 201, res.text)
        primary = res.json()["submission"]
        children = self._submissions(self.customer["_id"])
        self.assertEqual(len(children), 1)
        child = children[0]
        self.assertEqual(child["data"], {"name": "Ada", "details": {"age": 36}})
        self.assertEqual(
            primary["externalIds"],
            [{"type": "resource", "resource": self.customer["_id"], "id": child["_id"]}],
        )
        self.assertEqual(primary["data"]["customer"]["_id"], child["_id"])

        stored = self.client.get(f"/form/{self.contact['_id']}/submission/{primary['_id']}").json()["submission"]
        self.assertEqual(stored["externalIds"], primary["externalIds"])

    def test_update_reuses_linked_child(self) -> None:
        created = self.client.post(
            f"/form/{self.contact['_id']}/submission",
            json={"data": {"firstName": "Ada", "age": 36}},
        ).json()["submission"]
        res = self.client.put(
            f"/form/{self.contact['_id']}/submission/{created['_id']}",
            json={"data": {"firstName": "Grace", "age": 85}},
        )
        self.assertEqual(res.status_code, 200, res.text)
        updated = res.json()["submission"]
        children = self._submissions(self.customer["_id"])
        self.assertEqual(len(children), 1)
        self.assertEqual(children[0]["data"], {"name": "Grace", "details": {"age": 85}})
        self.assertEqual(len(updated["externalIds"]), 1)
        self.assertEqual(updated["data"]["customer"]["data"]["name"], "Grace")

    def test_dryrun_persists_nothing(self) -> None:
        res = self.client.post(
            f"/form/{self.contact['_id']}/submission?dryrun=1",
            json={"data": {"firstName": "Ada"}},
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(self._submissions(self.customer["_id"]), [])
        self.assertEqual(self._submissions(self.contact["_id"]), [])

    def test_failed_transform_is_a_warning(self) -> None:
        form = self._form(
            title="Lead",
            actions=[
                {
                    "name": "save",
                    "settings": {"resource": self.customer["_id"], "fields": {"name": "firstName"}, "transform": "data['x'] = 1 / 0"},
                }
            ],
        )
        res = self.client.post(f"/form/{form['_id']}/submission", json={"data": {"firstName": "Ada"}})
        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertEqual([w["code"] for w in body["warnings"]], ["ETRANSFORM"])
        self.assertEqual(self._submissions(self.customer["_id"])[0]["data"], {"name": "Ada"})


    def test_bad_mapping_is_a_warning(self) -> None:
        form = self._form(
            title="Lead",
            actions=[
                {"name": "save", "settings": {"resource": self.customer["_id"], "fields": {"name": "items[", "first": "firstName"}}},
                {"name": "save"},
            ],
        )
        res = self.client.post(f"/form/{form['_id']}/submission", json={"data": {"firstName": "Ada"}})
        self.assertEqual(res.status_code, 201, res.text)
        self.assertEqual([w["code"] for w in res.json()["warnings"]], ["EFIELDPATH"])
        self.assertEqual(self._submissions(self.customer["_id"])[0]["data"], {"first": "Ada"})

    def test_transform_builds_on_primary_data(self) -> None:
        form = self._form(
            title="Lead",
            actions=[
                {
                    "name": "save",
                    "settings": {
                        "resource": self.customer["_id"],
                        "transform": "data['fullName'] = data['firstName'] + ' ' + data['lastName']",
                    },
                }
            ],
        )
        res = self.client.post(
            f"/form/{form['_id']}/submission", json={"data": {"firstName": "Ada", "lastName": "Lovelace"}}
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()["warnings"], [])
        self.assertEqual(
            self._submissions(self.customer["_id"])[0]["data"],
            {"firstName": "Ada", "lastName": "Lovelace", "fullName": "Ada Lovelace"},
        )


class TestRedirectedSave(SubmissionApiCase):
    def test_primary_not_stored_without_second_save(self) -> None:
        customer = self._form(title="Customer", type="resource")
        lead = self._form(title="Lead", actions=[{"name": "save", "settings": {"resource": customer["_id"]}}])
        res = self.client.post(f"/form/{lead['_id']}/submission", json={"data": {"firstName": "Ada"}})
        self.assertEqual(res.status_code, 200, res.text)
        self.assertNotIn("_id", res.json()["submission"])
        self.assertEqual(self._submissions(lead["_id"]), [])
        self.assertEqual(len(self._submissions(customer["_id"])), 1)

    def test_after_handler_actions_ignored(self) -> None:
        customer = self._form(title="Customer", type="resource")
        lead = self._form(
            title="Lead",
            actions=[{"name": "save", "handler": ["after"], "settings": {"resource": customer["_id"]}}],
        )
        res = self.client.post(f"/form/{lead['_id']}/submission", json={"data": {"firstName": "Ada"}})
        self.assertEqual(res.status_code, 201, res.text)
        self.assertEqual(self._submissions(customer["_id"]), [])


class TestErrors(SubmissionApiCase):
    def test_unknown_form(self) -> None:
        res = self.client.post("/form/nope/submission", json={"data": {}})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "FORM_NOT_FOUND")

    def test_unknown_submission(self) -> None:
        form = self._form(title="Contact")
        res = self.client.put(f"/form/{form['_id']}/submission/nope", json={"data": {}})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "SUBMISSION_NOT_FOUND")

    def test_target_must_be_a_resource(self) -> None:
        plain = self._form(title="Plain")
        lead = self._form(title="Lead", actions=[{"name": "save", "settings": {"resource": plain["_id"]}}])
        res = self.client.post(f"/form/{lead['_id']}/submission", json={"data": {"a": 1}})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "EFORMLOAD")

    def test_form_requires_title(self) -> None:
        res = self.client.post("/form", json={"type": "resource"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "FORM_INVALID")

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})


class TestMutualResources(SubmissionApiCase):
    def _mutual(self) -> None:
        self._form(_id="alpha", title="Alpha", type="resource", actions=[{"name": "save", "settings": {"resource": "beta"}}])
        self._form(_id="beta", title="Beta", type="resource", actions=[{"name": "save", "settings": {"resource": "alpha"}}])

    def test_mutual_saves_are_rejected(self) -> None:
        self._mutual()
        res = self.client.post("/form/alpha/submission", json={"data": {"a": 1}})
        self.assertEqual(res.status_code, 400, res.text)
        self.assertEqual(res.json()["errors"][0]["code"], "EREQRECUR")
        self.assertEqual(self._submissions("alpha"), [])
        self.assertEqual(self._submissions("beta"), [])

    def test_rejected_for_every_depth_bound(self) -> None:
        for bound in (1, 2, 5, 50):
            with self.subTest(bound=bound):
                with patch.object(main, "handlers", _fresh_handlers(bound)):
                    self._mutual()
                    res = self.client.post("/form/alpha/submission", json={"data": {"a": 1}})
                    self.assertEqual(res.status_code, 400, res.text)
                    self.assertEqual(res.json()["errors"][0]["code"], "EREQRECUR")


if __name__ == "__main__":
    unittest.main()
