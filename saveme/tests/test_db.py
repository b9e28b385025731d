import unittest
from unittest.mock import patch

from saveme.db import (
    DocumentRecord,
    InMemoryDbClient,
    PasswordEntry,
    SqlDbClient,
    UserRecord,
    new_id,
)


def _entry(owner_id: str, title: str, created_at: float = None) -> PasswordEntry:
    entry = PasswordEntry(id=new_id(), owner_id=owner_id, title=title, secret="s3cret")
    if created_at is not None:
        entry.created_at = created_at
    return entry


def _document(owner_id: str) -> DocumentRecord:
    return DocumentRecord(
        id=new_id(),
        owner_id=owner_id,
        stored_name="1-2.pdf",
        original_name="report.pdf",
        locator="/uploads/documents/1-2.pdf",
        content_type="application/pdf",
        size_bytes=10,
    )


class OwnedTableContract:
    """Behaviour shared by every DbClient implementation."""

    def make_db(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_db()

    def test_list_is_newest_first(self):
        first = self.db.passwords.insert(_entry("alice", "E1", created_at=100.0))
        second = self.db.passwords.insert(_entry("alice", "E2", created_at=200.0))
        third = self.db.passwords.insert(_entry("alice", "E3", created_at=300.0))
        titles = [e.title for e in self.db.passwords.list("alice")]
        self.assertEqual(titles, ["E3", "E2", "E1"])
        self.assertEqual(
            [e.id for e in self.db.passwords.list("alice")],
            [third.id, second.id, first.id],
        )

    def test_equal_timestamps_fall_back_to_insertion_order(self):
        for title in ("E1", "E2", "E3"):
            self.db.passwords.insert(_entry("alice", title, created_at=500.0))
        titles = [e.title for e in self.db.passwords.list("alice")]
        self.assertEqual(titles, ["E3", "E2", "E1"])

    def test_records_are_isolated_by_owner(self):
        entry = self.db.passwords.insert(_entry("alice", "Bank"))
        self.assertIsNone(self.db.passwords.get(entry.id, "bob"))
        self.assertEqual(self.db.passwords.list("bob"), [])
        self.assertIsNone(self.db.passwords.update(entry.id, "bob", {"title": "x"}))
        self.assertFalse(self.db.passwords.delete(entry.id, "bob"))
        self.assertEqual(self.db.passwords.get(entry.id, "alice").title, "Bank")

    def test_get_returns_inserted_values(self):
        entry = _entry("alice", "Mail")
        entry.username = "al"
        entry.category = "email"
        self.db.passwords.insert(entry)
        loaded = self.db.passwords.get(entry.id, "alice")
        self.assertEqual(loaded, entry)

    def test_update_changes_fields_and_timestamp(self):
        entry = self.db.passwords.insert(_entry("alice", "Old", created_at=1.0))
        updated = self.db.passwords.update(entry.id, "alice", {"title": "New"})
        self.assertEqual(updated.title, "New")
        self.assertEqual(updated.created_at, 1.0)
        self.assertGreater(updated.updated_at, 1.0)
        self.assertEqual(self.db.passwords.get(entry.id, "alice").title, "New")

    def test_update_refuses_owner_change(self):
        entry = self.db.passwords.insert(_entry("alice", "Bank"))
        with self.assertRaises(ValueError):
            self.db.passwords.update(entry.id, "alice", {"owner_id": "bob"})

    def test_document_locator_is_write_once(self):
        document = self.db.documents.insert(_document("alice"))
        with self.assertRaises(ValueError):
            self.db.documents.update(document.id, "alice", {"locator": "/elsewhere"})

    def test_delete(self):
        document = self.db.documents.insert(_document("alice"))
        self.assertTrue(self.db.documents.delete(document.id, "alice"))
        self.assertIsNone(self.db.documents.get(document.id, "alice"))
        self.assertFalse(self.db.documents.delete(document.id, "alice"))

    def test_users(self):
        user = self.db.create_user(
            UserRecord(id=new_id(), email="a@example.com", password_hash="h")
        )
        self.assertEqual(self.db.get_user_by_email("a@example.com").id, user.id)
        self.assertIsNone(self.db.get_user_by_email("b@example.com"))

        updated = self.db.update_user(user.id, {"avatar": "/uploads/avatars/a.png"})
        self.assertEqual(updated.avatar, "/uploads/avatars/a.png")
        self.assertEqual(self.db.get_user(user.id).avatar, "/uploads/avatars/a.png")
        self.assertIsNone(self.db.update_user("missing", {"avatar": None}))


class InMemoryDbClientTests(OwnedTableContract, unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()

    def test_returned_records_are_copies(self):
        entry = self.db.passwords.insert(_entry("alice", "Bank"))
        loaded = self.db.passwords.get(entry.id, "alice")
        loaded.title = "Changed"
        self.assertEqual(self.db.passwords.get(entry.id, "alice").title, "Bank")

    def test_reset(self):
        self.db.passwords.insert(_entry("alice", "Bank"))
        self.db.reset()
        self.assertEqual(self.db.passwords.list("alice"), [])


class SqlDbClientTests(OwnedTableContract, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def make_db(self):
        return SqlDbClient("sqlite+pysqlite:///:memory:")

    def test_requires_url(self):
        with self.assertRaises(ValueError):
            SqlDbClient("")

    def test_same_timestamp_uses_sequence(self):
        with patch("saveme.db.time.time", return_value=42.0):
            for title in ("E1", "E2"):
                self.db.passwords.insert(_entry("carol", title))
        self.assertEqual(
            [e.title for e in self.db.passwords.list("carol")], ["E2", "E1"]
        )


if __name__ == "__main__":
    unittest.main()
