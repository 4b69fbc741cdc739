"""
Receipt processing pipeline.

Validates an uploaded receipt image, runs it through a text recognizer,
extracts candidate expense fields and stores the image. Text recognition and
blob storage are pluggable collaborators; a filesystem store and a fixed-text
recognizer are provided for local use and tests.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol, Union

from config_manager import get_receipt_settings
from database_ops import utc_now
from exceptions import ReceiptProcessingError, RecognitionError, StorageError
from receipt_extraction import ExtractedReceiptData, extract_receipt_fields
from utils import resolve_storage_dir

# Configure logging
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_MIME_TYPES = ('image/jpeg', 'image/jpg', 'image/png', 'image/heic', 'image/heif')


class TextRecognizer(Protocol):
    """Anything that turns receipt image bytes into text."""

    def recognize(self, image_bytes: bytes, mime_type: str) -> str:
        ...


class BlobStore(Protocol):
    """Anything that stores receipt images and returns a location for them."""

    def store(self, data: bytes, filename: str, mime_type: str, user_id: Any) -> str:
        ...


class StaticTextRecognizer:
    """Recognizer that returns fixed text regardless of the image."""

    def __init__(self, text: str):
        self.text = text

    def recognize(self, image_bytes: bytes, mime_type: str) -> str:
        return self.text


def sanitize_filename(filename: str) -> str:
    """Replace anything outside [A-Za-z0-9.-] with underscores."""
    name = Path(filename or '').name
    return re.sub(r'[^a-zA-Z0-9.-]', '_', name) or 'receipt'


class LocalBlobStore:
    """
    Stores receipt images on the local filesystem.

    Files are written to <base_dir>/<user_id>/<timestamp>_<sanitized name>.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = resolve_storage_dir(base_dir)
        logger.info(f"Receipt storage at {self.base_dir}")

    def store(self, data: bytes, filename: str, mime_type: str, user_id: Any) -> str:
        """
        Write the image and return its path.

        Raises:
            StorageError: If the file cannot be written
        """
        user_dir = self.base_dir / sanitize_filename(str(user_id))
        timestamp = utc_now().strftime('%Y%m%d%H%M%S%f')
        target = user_dir / f"{timestamp}_{sanitize_filename(filename)}"
        try:
            user_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to store receipt {filename}: {e}")
            raise StorageError(
                "Failed to store receipt image",
                details={"path": str(target)},
                original_error=e
            ) from e
        logger.info(f"Stored receipt for user {user_id} at {target}")
        return str(target)


@dataclass
class ReceiptProcessingResult:
    """
    Outcome of processing one receipt.

    Attributes:
        success: True once the image was recognized and stored
        image_url: Location returned by the blob store
        ocr_text: Raw recognized text
        extracted_data: Fields recovered from the text
        needs_manual_entry: True unless amount, date and merchant were all found
    """
    success: bool
    image_url: str
    ocr_text: str
    extracted_data: ExtractedReceiptData = field(default_factory=ExtractedReceiptData)

    @property
    def confidence(self) -> Dict[str, float]:
        return self.extracted_data.confidence.to_dict()

    @property
    def needs_manual_entry(self) -> bool:
        return not self.extracted_data.is_complete

    def to_expense_draft(self) -> Dict[str, Any]:
        """
        Return the recovered fields as keyword arguments for ExpenseManager.add_expense.

        Missing fields are left out so the caller fills them in by hand.
        """
        data = self.extracted_data
        draft: Dict[str, Any] = {'receipt_url': self.image_url}
        if data.amount is not None:
            draft['amount'] = data.amount
        if data.date is not None:
            draft['expense_date'] = data.date
        if data.merchant is not None:
            draft['merchant'] = data.merchant
        if data.payment_method is not None:
            draft['payment_method'] = data.payment_method
        if data.description is not None:
            draft['description'] = data.description
        return draft

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'image_url': self.image_url,
            'ocr_text': self.ocr_text,
            'extracted_data': self.extracted_data.to_dict(),
            'confidence': self.confidence,
            'needs_manual_entry': self.needs_manual_entry,
        }


class ReceiptProcessor:
    """
    Runs the validate, recognize, extract and store steps for an upload.
    """

    def __init__(
        self,
        recognizer: TextRecognizer,
        blob_store: BlobStore,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        allowed_mime_types: Iterable[str] = ALLOWED_MIME_TYPES,
        known_merchants: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the receipt processor.

        Args:
            recognizer: Text recognizer collaborator
            blob_store: Image storage collaborator
            max_upload_bytes: Largest accepted upload
            allowed_mime_types: Accepted image MIME types
            known_merchants: Optional replacement for the built-in merchant list
        """
        self.recognizer = recognizer
        self.blob_store = blob_store
        self.max_upload_bytes = int(max_upload_bytes)
        self.allowed_mime_types = {mime.lower() for mime in allowed_mime_types}
        self.known_merchants = list(known_merchants) if known_merchants is not None else None

    @classmethod
    def from_config(
        cls,
        recognizer: TextRecognizer,
        config: Optional[Dict[str, Any]] = None
    ) -> 'ReceiptProcessor':
        """Build a processor storing images under the configured receipts directory."""
        settings = get_receipt_settings(config)
        return cls(
            recognizer,
            LocalBlobStore(settings['storage_dir']),
            max_upload_bytes=settings['max_upload_bytes'],
            allowed_mime_types=settings['allowed_mime_types'],
        )

    def validate_upload(self, image_bytes: bytes, filename: str, mime_type: str) -> None:
        """
        Reject empty, oversize or unsupported uploads.

        Raises:
            ReceiptProcessingError: Describing the first problem found
        """
        if not image_bytes:
            raise ReceiptProcessingError("No receipt file provided", details={"filename": filename})
        if len(image_bytes) > self.max_upload_bytes:
            raise ReceiptProcessingError(
                "Receipt file is too large",
                details={"size": len(image_bytes), "max_upload_bytes": self.max_upload_bytes}
            )
        if (mime_type or '').lower() not in self.allowed_mime_types:
            raise ReceiptProcessingError(
                "Invalid file type. Please upload a JPG, PNG, or HEIC image.",
                details={"mime_type": mime_type}
            )

    def process(
        self,
        image_bytes: bytes,
        filename: str,
        mime_type: str,
        user_id: Any
    ) -> ReceiptProcessingResult:
        """
        Process an uploaded receipt.

        An empty or partial extraction still returns a successful result; the
        caller checks needs_manual_entry and pre-fills whatever was found.

        Args:
            image_bytes: Uploaded image content
            filename: Original file name
            mime_type: Declared MIME type
            user_id: Uploading user

        Returns:
            ReceiptProcessingResult

        Raises:
            ReceiptProcessingError: If the upload is rejected
            RecognitionError: If text recognition fails
            StorageError: If the image cannot be stored
        """
        self.validate_upload(image_bytes, filename, mime_type)

        try:
            ocr_text = self.recognizer.recognize(image_bytes, mime_type) or ''
        except RecognitionError:
            raise
        except Exception as e:
            logger.error(f"Text recognition failed for {filename}: {e}")
            raise RecognitionError(
                "Failed to recognize receipt text",
                details={"filename": filename},
                original_error=e
            ) from e

        extracted = extract_receipt_fields(ocr_text, self.known_merchants)

        try:
            image_url = self.blob_store.store(image_bytes, filename, mime_type, user_id)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Storing receipt {filename} failed: {e}")
            raise StorageError(
                "Failed to store receipt image",
                details={"filename": filename},
                original_error=e
            ) from e

        result = ReceiptProcessingResult(
            success=True,
            image_url=image_url,
            ocr_text=ocr_text,
            extracted_data=extracted,
        )
        if result.needs_manual_entry:
            logger.info(f"Receipt {filename} needs manual entry; found {sorted(extracted.to_dict())}")
        else:
            logger.info(f"Receipt {filename} processed with overall confidence {extracted.confidence.overall:.2f}")
        return result
