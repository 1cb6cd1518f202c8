import io
import os
import shutil
import tempfile
import unittest

from quotedesk.application.uploads import discard_blobs, display_name_for, store_uploads, validate_uploads
from quotedesk.domain.contracts import UploadedFile
from quotedesk.errors import StorageError, ValidationError
from quotedesk.infrastructure.file_store import LocalFileStore
from tests.helpers.api import ApiHarness, xlsx


def _upload(name: str, size: int = 4) -> UploadedFile:
    return UploadedFile(filename=name, stream=io.BytesIO(b"x" * size), size=size)


LIMITS = {"max_files": 2, "max_file_bytes": 10, "allowed_extensions": (".xlsx", ".xls")}


class UploadValidationTest(unittest.TestCase):
    def test_accepts_spreadsheets_within_limits(self) -> None:
        accepted = validate_uploads([_upload("a.xlsx"), _upload("B.XLS")], **LIMITS)
        self.assertEqual([item.filename for item in accepted], ["a.xlsx", "B.XLS"])

    def test_blank_entries_are_ignored(self) -> None:
        accepted = validate_uploads([_upload(""), None, _upload("a.xlsx")], **LIMITS)
        self.assertEqual(len(accepted), 1)

    def test_too_many_files(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_uploads([_upload("a.xlsx"), _upload("b.xlsx"), _upload("c.xlsx")], **LIMITS)
        self.assertEqual(ctx.exception.code, "too_many_files")
        self.assertEqual(ctx.exception.payload["max_files"], 2)

    def test_wrong_extension(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_uploads([_upload("invoice.pdf")], **LIMITS)
        self.assertEqual(ctx.exception.code, "file_type_invalid")
        self.assertEqual(ctx.exception.payload["filename"], "invoice.pdf")

    def test_oversized_file(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_uploads([_upload("big.xlsx", size=11)], **LIMITS)
        self.assertEqual(ctx.exception.code, "file_too_large")

    def test_display_name_drops_client_paths(self) -> None:
        self.assertEqual(display_name_for("C:\\Users\\me\\quote.xlsx"), "quote.xlsx")
        self.assertEqual(display_name_for("../../etc/passwd"), "passwd")
        self.assertEqual(display_name_for(""), "attachment")


class FileStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.root = tempfile.mkdtemp(prefix="quotedesk_blobs_")
        self.store = LocalFileStore(os.path.join(self.root, "uploads"))

    def tearDown(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)

    def test_store_uses_random_names_and_keeps_display_name(self) -> None:
        stored = store_uploads(self.store, [_upload("Quote 1.xlsx"), _upload("Quote 1.xlsx")])
        self.assertEqual([item.display_name for item in stored], ["Quote 1.xlsx", "Quote 1.xlsx"])
        self.assertNotEqual(stored[0].stored_name, stored[1].stored_name)
        self.assertTrue(all(item.stored_name.endswith(".xlsx") for item in stored))
        with self.store.open(stored[0].stored_name) as handle:
            self.assertEqual(handle.read(), b"xxxx")

        discard_blobs(self.store, [item.stored_name for item in stored])
        self.assertFalse(self.store.exists(stored[0].stored_name))

    def test_traversal_names_are_refused(self) -> None:
        with self.assertRaises(StorageError) as ctx:
            self.store.open("../secrets.xlsx")
        self.assertEqual(ctx.exception.http_status, 404)

    def test_missing_blob_is_not_found(self) -> None:
        with self.assertRaises(StorageError) as ctx:
            self.store.open("0123456789abcdef.xlsx")
        self.assertEqual(ctx.exception.code, "file_not_found")


class UploadApiLimitsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.api = ApiHarness("quotedesk_upload_limits", UPLOAD_MAX_FILES=2, UPLOAD_MAX_FILE_BYTES=64)
        self.api.create_user("customer", "customer")

    def tearDown(self) -> None:
        self.api.cleanup()

    def test_limits_are_enforced_before_anything_is_stored(self) -> None:
        response = self.api.create_quote("customer", files=[xlsx("a.xlsx"), xlsx("b.xlsx"), xlsx("c.xlsx")])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "too_many_files")

        response = self.api.create_quote("customer", files=[xlsx("a.xlsx", b"x" * 65)])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "file_too_large")

        response = self.api.create_quote("customer", files=[xlsx("a.csv")])
        self.assertEqual(response.get_json()["error"], "file_type_invalid")

        self.assertEqual(os.listdir(self.api.sandbox.upload_dir), [])


if __name__ == "__main__":
    unittest.main()
