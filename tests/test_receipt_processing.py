"""
Unit tests for the receipt processing pipeline.
"""

from unittest.mock import Mock

import pytest

from database_ops import PaymentMethod
from exceptions import ReceiptProcessingError, RecognitionError, StorageError
from expenses import ExpenseManager
from receipt_processing import (
    LocalBlobStore,
    ReceiptProcessor,
    StaticTextRecognizer,
    sanitize_filename,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

FULL_RECEIPT = """
Zomato
Date: 14/06/2024
Total: Rs. 640.00
Paid via UPI
"""


@pytest.fixture()
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "receipts")


def _processor(text, blob_store, **kwargs):
    return ReceiptProcessor(StaticTextRecognizer(text), blob_store, **kwargs)


class TestValidation:
    """Upload validation."""

    def test_empty_upload_rejected(self, blob_store):
        with pytest.raises(ReceiptProcessingError):
            _processor("", blob_store).process(b"", "r.png", "image/png", 1)

    def test_oversize_upload_rejected(self, blob_store):
        processor = _processor("", blob_store, max_upload_bytes=16)

        with pytest.raises(ReceiptProcessingError) as exc_info:
            processor.process(PNG_BYTES, "r.png", "image/png", 1)
        assert exc_info.value.details["max_upload_bytes"] == 16

    def test_unsupported_type_rejected(self, blob_store):
        with pytest.raises(ReceiptProcessingError):
            _processor("", blob_store).process(PNG_BYTES, "r.pdf", "application/pdf", 1)

    def test_mime_type_is_case_insensitive(self, blob_store):
        result = _processor("", blob_store).process(PNG_BYTES, "r.png", "IMAGE/PNG", 1)

        assert result.success is True


class TestProcess:
    """Recognition, extraction and storage."""

    def test_complete_receipt(self, blob_store, tmp_path):
        result = _processor(FULL_RECEIPT, blob_store).process(PNG_BYTES, "lunch receipt.png", "image/png", 7)

        assert result.success is True
        assert result.needs_manual_entry is False
        assert result.extracted_data.amount == 640.0
        assert result.extracted_data.date == "2024-06-14"
        assert result.extracted_data.merchant == "Zomato"
        assert result.extracted_data.payment_method is PaymentMethod.UPI
        assert result.confidence["overall"] > 0.5
        stored = tmp_path / "receipts" / "7"
        [path] = list(stored.iterdir())
        assert path.name.endswith("_lunch_receipt.png")
        assert path.read_bytes() == PNG_BYTES
        assert result.image_url == str(path)

    def test_unreadable_receipt_needs_manual_entry(self, blob_store):
        result = _processor("", blob_store).process(PNG_BYTES, "blurry.jpg", "image/jpeg", 7)

        assert result.success is True
        assert result.needs_manual_entry is True
        assert result.extracted_data.is_empty is True
        assert result.to_expense_draft() == {"receipt_url": result.image_url}

    def test_partial_receipt_prefills_draft(self, blob_store):
        result = _processor("Total: 250", blob_store).process(PNG_BYTES, "r.png", "image/png", 7)

        assert result.needs_manual_entry is True
        assert result.to_expense_draft() == {"receipt_url": result.image_url, "amount": 250.0}

    def test_to_dict(self, blob_store):
        result = _processor(FULL_RECEIPT, blob_store).process(PNG_BYTES, "r.png", "image/png", 7)

        data = result.to_dict()
        assert data["extracted_data"]["payment_method"] == "UPI"
        assert data["needs_manual_entry"] is False
        assert data["ocr_text"] == FULL_RECEIPT

    def test_draft_records_expense(self, db_manager, user, blob_store):
        result = _processor(FULL_RECEIPT, blob_store).process(PNG_BYTES, "r.png", "image/png", user.id)

        expense = ExpenseManager(db_manager).add_expense(user_id=user.id, **result.to_expense_draft())

        assert expense.amount == 640.0
        assert expense.merchant == "Zomato"
        assert expense.payment_method is PaymentMethod.UPI
        assert expense.date.date().isoformat() == "2024-06-14"
        assert expense.description == "Purchase at Zomato for ₹640"
        assert expense.receipt_url == result.image_url

    def test_recognizer_failure_raises_recognition_error(self, blob_store):
        recognizer = Mock()
        recognizer.recognize.side_effect = TimeoutError("vision service timed out")
        processor = ReceiptProcessor(recognizer, blob_store)

        with pytest.raises(RecognitionError) as exc_info:
            processor.process(PNG_BYTES, "r.png", "image/png", 1)
        assert isinstance(exc_info.value.original_error, TimeoutError)

    def test_storage_failure_raises_storage_error(self):
        store = Mock()
        store.store.side_effect = PermissionError("read-only bucket")
        processor = ReceiptProcessor(StaticTextRecognizer(FULL_RECEIPT), store)

        with pytest.raises(StorageError):
            processor.process(PNG_BYTES, "r.png", "image/png", 1)

    def test_recognition_and_storage_errors_are_processing_errors(self):
        assert issubclass(RecognitionError, ReceiptProcessingError)
        assert issubclass(StorageError, ReceiptProcessingError)

    def test_from_config(self, tmp_path):
        config = {"receipts": {"storage_dir": str(tmp_path / "uploads"), "max_upload_bytes": 10}}

        processor = ReceiptProcessor.from_config(StaticTextRecognizer(""), config)

        assert processor.max_upload_bytes == 10
        assert "image/heic" in processor.allowed_mime_types
        assert (tmp_path / "uploads").is_dir()


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("receipt.png", "receipt.png"),
        ("my receipt (1).jpg", "my_receipt__1_.jpg"),
        ("../../etc/passwd", "passwd"),
        ("", "receipt"),
    ],
)
def test_sanitize_filename(filename, expected):
    assert sanitize_filename(filename) == expected
