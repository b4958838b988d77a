import sys
import unittest
from pathlib import Path

SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICE_ROOT))

from formsync.editor import (  # noqa: E402
    RecentUserIds,
    add_field,
    add_group,
    generate_user_id,
    move_field,
    remove_field,
    remove_group,
    update_field,
)
from formsync.errors import DanglingDependency, DuplicateFieldId  # noqa: E402
from formsync.models import FieldDefinition  # noqa: E402
from formsync.settings import default_form_config  # noqa: E402


class EditorTests(unittest.TestCase):
    def setUp(self):
        self.config = default_form_config()

    def test_add_group_appends_once(self):
        updated = add_group(self.config, "Follow-up")
        self.assertEqual(updated.groups[-1], "Follow-up")
        self.assertIs(add_group(updated, "Follow-up"), updated)
        self.assertIs(add_group(updated, "  "), updated)
        self.assertNotIn("Follow-up", self.config.groups)

    def test_remove_group_drops_its_fields(self):
        updated = remove_group(self.config, "Clinical Information")
        self.assertEqual(updated.groups, ["Personal Information"])
        self.assertEqual([field.id for field in updated.fields], ["name", "age"])

    def test_add_field_applies_defaults(self):
        field = FieldDefinition(id="smoker", type="codedValue", label="Smoker", group="Clinical Information")
        updated = add_field(self.config, field)
        added = updated.field_by_id("smoker")
        self.assertEqual([option.code for option in added.coded_options], [0, 1])

    def test_add_field_rejects_duplicate_id(self):
        with self.assertRaises(DuplicateFieldId):
            add_field(self.config, FieldDefinition(id="age", label="Age again", group="Personal Information"))

    def test_update_field_replaces_in_place(self):
        renamed = self.config.field_by_id("age").model_copy(update={"label": "Age (years)"})
        updated = update_field(self.config, renamed)
        self.assertEqual(updated.fields[1].label, "Age (years)")
        with self.assertRaises(KeyError):
            update_field(self.config, FieldDefinition(id="ghost", label="Ghost", group="Personal Information"))

    def test_remove_field_that_others_depend_on_is_rejected(self):
        with self.assertRaises(DanglingDependency):
            remove_field(self.config, "hasDiabetes")
        self.assertNotIn("glucoseLevel", [f.id for f in remove_field(self.config, "glucoseLevel").fields])

    def test_move_field(self):
        updated = move_field(self.config, 3, 0)
        self.assertEqual([field.id for field in updated.fields], ["glucoseLevel", "name", "age", "hasDiabetes"])
        with self.assertRaises(IndexError):
            move_field(self.config, 9, 0)


class UserIdTests(unittest.TestCase):
    def test_generated_ids_are_unique(self):
        first, second = generate_user_id(), generate_user_id()
        self.assertNotEqual(first, second)
        self.assertRegex(first, r"^[0-9a-z]+-[0-9a-z]{8}$")

    def test_remember_reports_changes(self):
        recent = RecentUserIds(initial=["a"])
        self.assertFalse(recent.remember("a"))
        self.assertTrue(recent.remember("b"))
        self.assertEqual(recent.as_list(), ["b", "a"])

    def test_recent_ids_are_capped_and_unique(self):
        recent = RecentUserIds(limit=3)
        for user_id in ("a", "b", "a", "c", "d"):
            recent.remember(user_id)
        self.assertEqual(recent.as_list(), ["d", "c", "b"])


if __name__ == "__main__":
    unittest.main()
