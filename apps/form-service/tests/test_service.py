import importlib
import json
import os
import sys
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICE_ROOT))

_MODULE = "formsync.main"
_ENV_KEYS = (
    "FORMSYNC_ENDPOINT_URL",
    "FORMSYNC_TRANSPORT_TIMEOUT",
    "FORMSYNC_DEDUP_WINDOW",
    "FORMSYNC_FALLBACK_DELAY",
    "FORMSYNC_CONFIG_PATH",
)


def _reload_module():
    sys.modules.pop(_MODULE, None)
    return importlib.import_module(_MODULE)


class FormServiceTests(unittest.TestCase):
    def setUp(self):
        self._env_backup = {key: os.environ.get(key) for key in _ENV_KEYS}
        for key in _ENV_KEYS:
            os.environ.pop(key, None)
        os.environ["FORMSYNC_FALLBACK_DELAY"] = "0"
        self._tmp = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self._tmp.name, "form.json")
        os.environ["FORMSYNC_CONFIG_PATH"] = self.config_path
        self.module = _reload_module()
        self.client = TestClient(self.module.app)

    def tearDown(self):
        sys.modules.pop(_MODULE, None)
        self._tmp.cleanup()
        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def test_health_reports_local_mode(self):
        body = self.client.get("/health").json()
        self.assertTrue(body["ok"])
        self.assertFalse(body["endpoint_configured"])

    def test_default_config_served(self):
        body = self.client.get("/config").json()
        self.assertEqual(body["groups"], ["Personal Information", "Clinical Information"])
        self.assertEqual(body["fields"][3]["condition"], {"dependsOn": "hasDiabetes", "value": True})

    def test_put_invalid_config_is_rejected(self):
        response = self.client.put(
            "/config",
            json={"groups": ["A"], "fields": [{"id": "x", "type": "text", "label": "X", "group": "B"}]},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["code"], "unknown_group")

    def test_put_config_persists_to_file(self):
        config = {"groups": ["A"], "fields": [{"id": "x", "type": "text", "label": "X", "group": "A"}], "title": "Intake"}
        response = self.client.put("/config", json=config)
        self.assertEqual(response.status_code, 200)
        saved = json.loads(Path(self.config_path).read_text(encoding="utf-8"))
        self.assertEqual(saved["title"], "Intake")

    def test_saved_config_is_loaded_on_start(self):
        self.client.put("/config", json={"groups": ["A"], "fields": [{"id": "x", "type": "text", "label": "X", "group": "A"}]})
        client = TestClient(_reload_module().app)
        self.assertEqual(client.get("/config").json()["groups"], ["A"])

    def test_failed_save_leaves_config_unchanged(self):
        os.environ["FORMSYNC_CONFIG_PATH"] = os.path.join(self._tmp.name, "missing", "form.json")
        client = TestClient(_reload_module().app, raise_server_exceptions=False)
        response = client.post("/config/groups", json={"name": "Extra"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "Failed to save form configuration")
        self.assertNotIn("Extra", client.get("/config").json()["groups"])

    def test_reserved_field_id_is_rejected(self):
        response = self.client.post(
            "/config/fields",
            json={"id": "timestamp", "type": "date", "label": "When", "group": "Clinical Information"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["code"], "reserved_field_id")

    def test_validate_endpoint_lists_issues(self):
        body = self.client.post(
            "/config/validate",
            json={
                "groups": ["A"],
                "fields": [
                    {"id": "x", "type": "text", "label": "X", "group": "A", "condition": {"dependsOn": "x", "value": 1}}
                ],
            },
        ).json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["errors"][0]["code"], "dependency_cycle")

    def test_add_field_applies_defaults(self):
        response = self.client.post(
            "/config/fields",
            json={"id": "mood", "type": "range", "label": "Mood", "group": "Clinical Information"},
        )
        self.assertEqual(response.status_code, 200)
        field = response.json()["fields"][-1]
        self.assertEqual((field["min"], field["max"]), (0, 100))

    def test_group_and_field_editing(self):
        self.client.post("/config/groups", json={"name": "Extra"})
        self.client.post("/config/fields", json={"id": "note", "type": "text", "label": "Note", "group": "Extra"})
        moved = self.client.post("/config/fields/move", json={"source_index": 4, "destination_index": 0}).json()
        self.assertEqual(moved["fields"][0]["id"], "note")
        body = self.client.delete("/config/groups/Extra").json()
        self.assertNotIn("Extra", body["groups"])
        self.assertEqual(self.client.delete("/config/fields/ghost").status_code, 404)

    def test_visible_fields_follow_condition(self):
        shown = self.client.post("/form/visible-fields", json={"values": {"hasDiabetes": True}}).json()
        hidden = self.client.post("/form/visible-fields", json={"values": {"hasDiabetes": False}}).json()
        self.assertIn("glucoseLevel", [field["id"] for field in shown["fields"]])
        self.assertNotIn("glucoseLevel", [field["id"] for field in hidden["fields"]])

    def test_submit_then_fetch_round_trip(self):
        values = {"name": "Ann", "age": 52, "hasDiabetes": True, "glucoseLevel": 7.1}
        first = self.client.post("/submissions/p1", json={"values": values}).json()
        self.assertEqual(first, {"success": True, "source": "fallback"})
        duplicate = self.client.post("/submissions/p1", json={"values": values}).json()
        self.assertTrue(duplicate["duplicatePrevented"])

        body = self.client.get("/submissions/p1").json()
        self.assertTrue(body["found"])
        self.assertEqual(body["record"]["userId"], "p1")
        self.assertEqual(body["values"]["glucoseLevel"], 7.1)
        self.assertIn("p1", self.client.get("/users/recent").json()["userIds"])

    def test_fetch_unknown_user(self):
        body = self.client.get("/submissions/nobody").json()
        self.assertFalse(body["found"])
        self.assertEqual(body["values"]["name"], "")

    def test_submit_unknown_field_is_rejected(self):
        response = self.client.post("/submissions/p1", json={"values": {"shoeSize": 9}})
        self.assertEqual(response.status_code, 422)

    def test_recent_user_ids_survive_restart(self):
        self.client.post("/submissions/p7", json={"values": {"name": "Zed"}})
        saved = Path(self.config_path).with_name("form.recent_user_ids.json")
        self.assertEqual(json.loads(saved.read_text(encoding="utf-8")), ["p7"])
        client = TestClient(_reload_module().app)
        self.assertEqual(client.get("/users/recent").json()["userIds"], ["p7"])

    def test_new_user_id(self):
        user_id = self.client.post("/users/new").json()["userId"]
        self.assertEqual(self.client.get("/users/recent").json()["userIds"][0], user_id)


if __name__ == "__main__":
    unittest.main()
