import io
import unittest
from unittest.mock import MagicMock, patch

from saveme.config import Settings
from saveme.db import InMemoryDbClient, UserRecord
from saveme.errors import NotFoundError, ValidationError
from saveme.storage import AVATARS, DOCUMENTS, DeleteOutcome, InMemoryStorageBackend
from saveme import uploads


class ZeroStream(io.RawIOBase):
    """Produces ``size`` zero bytes without holding them in memory."""

    def __init__(self, size: int):
        self.remaining = size
        self.bytes_read = 0

    def readable(self):
        return True

    def read(self, n=-1):
        if self.remaining <= 0:
            return b""
        n = self.remaining if n is None or n < 0 else min(n, self.remaining)
        self.remaining -= n
        self.bytes_read += n
        return b"\0" * n


class UploadPipelineTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(_env_file=None)
        self.db = InMemoryDbClient()
        self.storage = MagicMock()
        self.storage.store.return_value = "/uploads/documents/stored.bin"

    def test_document_policy_uses_configured_ceiling(self):
        policy = uploads.document_policy(self.settings)
        self.assertEqual(policy.namespace, DOCUMENTS)
        self.assertEqual(policy.max_bytes, 50 * 1024 * 1024)
        self.assertIsNone(policy.allowed_content_types)

    def test_sixty_megabyte_document_is_rejected_before_storage(self):
        stream = ZeroStream(60 * 1024 * 1024)
        with self.assertRaises(ValidationError) as ctx:
            uploads.store_document(
                self.db,
                self.storage,
                "alice",
                "big.bin",
                "application/octet-stream",
                stream,
                uploads.document_policy(self.settings),
            )
        self.assertIn("Maximum size is 50MB", ctx.exception.message)
        self.storage.store.assert_not_called()
        self.assertEqual(self.db.documents.list("alice"), [])
        # Staging stops shortly after the ceiling instead of draining the stream.
        self.assertLess(stream.bytes_read, 52 * 1024 * 1024)

    def test_missing_file(self):
        with self.assertRaises(ValidationError) as ctx:
            uploads.stage_upload(None, None, None, uploads.document_policy(self.settings))
        self.assertIn("No file uploaded", ctx.exception.message)

    def test_avatar_requires_image_extension_and_content_type(self):
        policy = uploads.avatar_policy(self.settings)
        with self.assertRaises(ValidationError) as ctx:
            uploads.stage_upload("me.png", "text/plain", io.BytesIO(b"x"), policy)
        self.assertIn("Only images", ctx.exception.message)
        with self.assertRaises(ValidationError):
            uploads.stage_upload("me.txt", "image/png", io.BytesIO(b"x"), policy)

        staged = uploads.stage_upload("me.PNG", "image/png", io.BytesIO(b"png"), policy)
        self.assertEqual(staged.size_bytes, 3)
        staged.close()

    def test_size_message_for_small_limits(self):
        policy = uploads.UploadPolicy(namespace=DOCUMENTS, max_bytes=10)
        with self.assertRaises(ValidationError) as ctx:
            uploads.stage_upload("a.txt", "text/plain", io.BytesIO(b"x" * 11), policy)
        self.assertEqual(
            ctx.exception.message, "File size too large. Maximum size is 10 bytes"
        )

    def test_store_document_records_metadata_after_blob(self):
        record = uploads.store_document(
            self.db,
            self.storage,
            "alice",
            "report.pdf",
            "application/pdf",
            io.BytesIO(b"%PDF-1.4"),
            uploads.document_policy(self.settings),
        )
        args = self.storage.store.call_args.args
        self.assertEqual(args[1], DOCUMENTS)
        self.assertTrue(args[2].endswith(".pdf"))
        self.assertEqual(record.stored_name, args[2])
        self.assertEqual(record.locator, "/uploads/documents/stored.bin")
        self.assertEqual(record.size_bytes, 8)
        self.assertEqual(record.original_name, "report.pdf")
        self.assertEqual(self.db.documents.get(record.id, "alice"), record)

    def test_metadata_failure_leaves_orphan_and_propagates(self):
        with patch.object(self.db.documents, "insert", side_effect=RuntimeError("db down")):
            with self.assertLogs("saveme.uploads", level="ERROR") as logs:
                with self.assertRaises(RuntimeError):
                    uploads.store_document(
                        self.db,
                        self.storage,
                        "alice",
                        "a.txt",
                        "text/plain",
                        io.BytesIO(b"x"),
                        uploads.document_policy(self.settings),
                    )
        self.assertIn("orphaned", logs.output[0])
        self.storage.store.assert_called_once()


class AvatarTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(_env_file=None)
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageBackend()
        self.db.create_user(UserRecord(id="alice", email="a@example.com", password_hash="h"))
        self.policy = uploads.avatar_policy(self.settings)

    def _upload(self, content: bytes):
        return uploads.replace_avatar(
            self.db, self.storage, "alice", "me.png", "image/png", io.BytesIO(content), self.policy
        )

    def test_replace_returns_previous_locator(self):
        user, previous = self._upload(b"one")
        self.assertIsNone(previous)
        first = user.avatar
        self.assertIn(f"/{AVATARS}/alice-", first)

        user, previous = self._upload(b"two")
        self.assertEqual(previous, first)
        self.assertNotEqual(user.avatar, first)
        self.assertEqual(self.storage.get_bytes(user.avatar), b"two")

        uploads.discard_blob(self.storage, previous)
        with self.assertRaises(FileNotFoundError):
            self.storage.get_bytes(first)

    def test_unknown_user(self):
        with self.assertRaises(NotFoundError):
            uploads.replace_avatar(
                self.db, self.storage, "ghost", "me.png", "image/png", io.BytesIO(b"x"), self.policy
            )
        self.assertEqual(self.storage.stored_objects, {})

    def test_remove_avatar_survives_failed_blob_delete(self):
        user, _ = self._upload(b"one")
        storage = MagicMock()
        storage.delete.return_value = DeleteOutcome(deleted=False, reason="boom")
        uploads.remove_avatar(self.db, storage, "alice")
        storage.delete.assert_called_once_with(user.avatar)
        self.assertIsNone(self.db.get_user("alice").avatar)

    def test_remove_without_avatar_is_noop(self):
        storage = MagicMock()
        uploads.remove_avatar(self.db, storage, "alice")
        storage.delete.assert_not_called()


if __name__ == "__main__":
    unittest.main()
