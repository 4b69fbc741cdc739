"""
Receipt field extraction module.

Turns recognized receipt text into structured candidate fields for a new
expense: amount, date, merchant and payment method. Every field is tried
independently against an ordered list of patterns and the first match wins.
The result is a best-effort hint; any field may be missing and an empty
result simply means the user enters the expense by hand.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple

from database_ops import PaymentMethod

# Configure logging
logger = logging.getLogger(__name__)

CURRENCY = r"(?:₹|\brs\.?|\binr)"
NUMBER = r"(\d[\d,]*(?:\.\d{1,2})?)"
SEPARATOR = r"[:\-=\s]*"

# (pattern, confidence); keyword-anchored totals come before bare currency amounts
AMOUNT_PATTERNS: List[Tuple[Pattern, float]] = [
    (re.compile(rf"\bgrand\s*total{SEPARATOR}{CURRENCY}?\s*{NUMBER}", re.IGNORECASE), 0.9),
    (re.compile(rf"(?<!sub )(?<!sub-)\btotal(?:\s*amount)?{SEPARATOR}{CURRENCY}?\s*{NUMBER}", re.IGNORECASE), 0.85),
    (re.compile(rf"\bnet\s*(?:amount\s*)?payable{SEPARATOR}{CURRENCY}?\s*{NUMBER}", re.IGNORECASE), 0.85),
    (re.compile(rf"\bamount(?:\s*(?:paid|due|payable))?{SEPARATOR}{CURRENCY}?\s*{NUMBER}", re.IGNORECASE), 0.75),
    (re.compile(rf"\bsub\s*-?\s*total{SEPARATOR}{CURRENCY}?\s*{NUMBER}", re.IGNORECASE), 0.6),
    (re.compile(rf"{CURRENCY}\s*{NUMBER}", re.IGNORECASE), 0.5),
    (re.compile(rf"{NUMBER}\s*(?:rupees|inr|rs)\b", re.IGNORECASE), 0.45),
]

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
MONTH_NAMES = "|".join(MONTHS)

# (pattern, group order, confidence)
DATE_PATTERNS: List[Tuple[Pattern, str, float]] = [
    (re.compile(r"\bdate[:\s]*(\d{1,2})[-/.](\d{1,2})[-/.](\d{2,4})\b", re.IGNORECASE), "dmy", 0.9),
    (re.compile(r"\b(\d{1,2})[-/.](\d{1,2})[-/.](\d{2,4})\b"), "dmy", 0.7),
    (re.compile(r"\b(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})\b"), "ymd", 0.75),
    (re.compile(rf"\b(\d{{1,2}})[\s-]*({MONTH_NAMES})[a-z]*\.?[\s,-]*(\d{{2,4}})\b", re.IGNORECASE), "dmy", 0.8),
]

KNOWN_MERCHANTS = [
    "Swiggy", "Zomato", "BigBasket", "Amazon", "Flipkart", "Myntra",
    "Reliance", "DMart", "Spencer", "More", "Big Bazaar", "Shoppers Stop",
    "Dominos", "Pizza Hut", "McDonald", "KFC", "Burger King", "Subway",
    "Uber", "Ola", "Rapido", "Metro", "Petrol", "Shell", "HP", "Indian Oil",
    "Paytm", "PhonePe", "Google Pay", "HDFC", "ICICI", "SBI", "Axis",
]

CAPITALIZED_LINE = re.compile(r"^[A-Z][A-Za-z\s&'.,-]+$")
LABELED_MERCHANT = re.compile(r"\b(?:from|merchant|store|billed\s+to)\s*:\s*(.+)$", re.IGNORECASE)
MERCHANT_MIN_LENGTH = 3
MERCHANT_MAX_LENGTH = 49

PAYMENT_PATTERNS: List[Tuple[Pattern, float]] = [
    (re.compile(r"\bpayment[:\s]*(?:method[:\s]*|mode[:\s]*)?([a-z][a-z ]*)"), 0.9),
    (re.compile(r"\bpaid\s*(?:by|via|using)[:\s]*([a-z][a-z ]*)"), 0.85),
    (re.compile(
        r"\b(cash|credit\s*card|debit\s*card|card|credit|debit|upi|paytm|phone\s*pe|"
        r"g\s*pay|google\s*pay|wallet|net\s*banking|internet\s*banking|neft|imps|rtgs)\b"
    ), 0.6),
    (re.compile(r"\bmode[:\s]*([a-z][a-z ]*)"), 0.7),
]

PAYMENT_SYNONYMS: Dict[str, PaymentMethod] = {
    "cash": PaymentMethod.CASH,
    "card": PaymentMethod.CREDIT_CARD,
    "credit": PaymentMethod.CREDIT_CARD,
    "credit card": PaymentMethod.CREDIT_CARD,
    "debit": PaymentMethod.DEBIT_CARD,
    "debit card": PaymentMethod.DEBIT_CARD,
    "upi": PaymentMethod.UPI,
    "gpay": PaymentMethod.UPI,
    "g pay": PaymentMethod.UPI,
    "google pay": PaymentMethod.UPI,
    "googlepay": PaymentMethod.UPI,
    "paytm": PaymentMethod.WALLET,
    "phonepe": PaymentMethod.WALLET,
    "phone pe": PaymentMethod.WALLET,
    "wallet": PaymentMethod.WALLET,
    "net banking": PaymentMethod.NET_BANKING,
    "netbanking": PaymentMethod.NET_BANKING,
    "internet banking": PaymentMethod.NET_BANKING,
    "neft": PaymentMethod.NET_BANKING,
    "imps": PaymentMethod.NET_BANKING,
    "rtgs": PaymentMethod.NET_BANKING,
}

KNOWN_MERCHANT_CONFIDENCE = 0.95
CAPITALIZED_LINE_CONFIDENCE = 0.6
LABELED_MERCHANT_CONFIDENCE = 0.7


@dataclass(frozen=True)
class FieldConfidence:
    """Per-field confidence scores; 0.0 means the field was not found."""
    amount: float = 0.0
    date: float = 0.0
    merchant: float = 0.0
    payment_method: float = 0.0

    @property
    def overall(self) -> float:
        return (self.amount + self.date + self.merchant) / 3

    def to_dict(self) -> Dict[str, float]:
        return {
            "amount": self.amount,
            "date": self.date,
            "merchant": self.merchant,
            "payment_method": self.payment_method,
            "overall": round(self.overall, 4),
        }


@dataclass(frozen=True)
class ExtractedReceiptData:
    """
    Structured fields recovered from receipt text.

    Attributes:
        amount: Final total, if found
        date: ISO calendar date (YYYY-MM-DD), if found
        merchant: Merchant name, if found
        payment_method: PaymentMethod, if found and recognized
        description: "Purchase at ..." when a merchant was found
        confidence: Per-field confidence scores
    """
    amount: Optional[float] = None
    date: Optional[str] = None
    merchant: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    description: Optional[str] = None
    confidence: FieldConfidence = field(default_factory=FieldConfidence)

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.amount, self.date, self.merchant, self.payment_method)
        )

    @property
    def is_complete(self) -> bool:
        return self.amount is not None and self.date is not None and self.merchant is not None

    def to_dict(self) -> Dict[str, Any]:
        """Return only the fields that were found, with enum values as strings."""
        data: Dict[str, Any] = {}
        if self.amount is not None:
            data["amount"] = self.amount
        if self.date is not None:
            data["date"] = self.date
        if self.merchant is not None:
            data["merchant"] = self.merchant
        if self.payment_method is not None:
            data["payment_method"] = self.payment_method.value
        if self.description is not None:
            data["description"] = self.description
        return data


def normalize_text(raw_text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return re.sub(r"\s+", " ", raw_text).strip()


def format_amount(amount: float) -> str:
    """Format an amount for display: integral values without decimals."""
    if float(amount).is_integer():
        return str(int(amount))
    return f"{amount:.2f}".rstrip("0").rstrip(".")


def extract_amount(text: str) -> Tuple[Optional[float], float]:
    for pattern, confidence in AMOUNT_PATTERNS:
        for match in pattern.finditer(text):
            try:
                value = float(match.group(1).replace(",", ""))
            except ValueError:
                continue
            if math.isfinite(value) and value > 0:
                return value, confidence
    return None, 0.0


def _expand_year(token: str) -> Optional[int]:
    if len(token) == 2:
        year = int(token)
        return 2000 + year if year < 50 else 1900 + year
    if len(token) == 4:
        return int(token)
    return None


def _month_number(token: str) -> int:
    if token.isdigit():
        return int(token)
    return MONTHS[token[:3].lower()]


def extract_date(text: str) -> Tuple[Optional[str], float]:
    """
    Find the first valid calendar date.

    Two-digit years below 50 are read as 20xx, the rest as 19xx. A match that
    does not form a real date (month 13, 31 Feb) is skipped.
    """
    for pattern, order, confidence in DATE_PATTERNS:
        for match in pattern.finditer(text):
            first, second, third = match.groups()
            if order == "ymd":
                year, month, day = _expand_year(first), _month_number(second), int(third)
            else:
                day, month, year = int(first), _month_number(second), _expand_year(third)
            if year is None:
                continue
            try:
                return date(year, month, day).isoformat(), confidence
            except ValueError:
                continue
    return None, 0.0


def _valid_merchant(candidate: str) -> bool:
    return MERCHANT_MIN_LENGTH <= len(candidate) <= MERCHANT_MAX_LENGTH


def extract_merchant(
    raw_text: str,
    known_merchants: Optional[Iterable[str]] = None
) -> Tuple[Optional[str], float]:
    """
    Find the merchant name.

    Known merchant names are checked first as case-insensitive substrings of
    the whitespace-normalized text, so names split across lines or spaced
    out by OCR still match. They are returned in their canonical spelling.
    Otherwise the first capitalized line is used, then text following a
    from/merchant/store/billed-to label.
    """
    lowered = normalize_text(raw_text).lower()
    for name in (known_merchants if known_merchants is not None else KNOWN_MERCHANTS):
        if normalize_text(name).lower() in lowered:
            return name, KNOWN_MERCHANT_CONFIDENCE

    lines = [normalize_text(line) for line in raw_text.splitlines()]
    lines = [line for line in lines if line]

    for line in lines:
        if CAPITALIZED_LINE.match(line):
            candidate = line.strip(" ,.-")
            if _valid_merchant(candidate):
                return candidate, CAPITALIZED_LINE_CONFIDENCE

    for line in lines:
        match = LABELED_MERCHANT.search(line)
        if match:
            candidate = match.group(1).strip(" ,.-")
            if _valid_merchant(candidate):
                return candidate, LABELED_MERCHANT_CONFIDENCE

    return None, 0.0


def map_payment_method(phrase: str) -> Optional[PaymentMethod]:
    """
    Map captured payment text to a PaymentMethod.

    The longest leading word sequence (up to three words) found in the
    synonym table wins, so "upi ref 1234" maps to UPI.
    """
    words = phrase.lower().split()
    for size in (3, 2, 1):
        if len(words) >= size:
            method = PAYMENT_SYNONYMS.get(" ".join(words[:size]))
            if method is not None:
                return method
    return None


def extract_payment_method(text: str) -> Tuple[Optional[PaymentMethod], float]:
    lowered = text.lower()
    for pattern, confidence in PAYMENT_PATTERNS:
        for match in pattern.finditer(lowered):
            method = map_payment_method(match.group(1))
            if method is not None:
                return method, confidence
    return None, 0.0


def extract_receipt_fields(
    raw_text: Optional[str],
    known_merchants: Optional[Iterable[str]] = None
) -> ExtractedReceiptData:
    """
    Extract candidate expense fields from recognized receipt text.

    Never raises on odd input: anything that cannot be parsed is left out of
    the result.

    Args:
        raw_text: Text produced by a text recognizer
        known_merchants: Optional replacement for the built-in merchant list

    Returns:
        ExtractedReceiptData with whichever fields were found
    """
    raw_text = raw_text if isinstance(raw_text, str) else ("" if raw_text is None else str(raw_text))
    text = normalize_text(raw_text)
    if not text:
        return ExtractedReceiptData()

    amount, amount_confidence = extract_amount(text)
    receipt_date, date_confidence = extract_date(text)
    merchant, merchant_confidence = extract_merchant(raw_text, known_merchants)
    payment_method, payment_confidence = extract_payment_method(text)

    description = None
    if merchant:
        description = f"Purchase at {merchant}"
        if amount is not None:
            description += f" for ₹{format_amount(amount)}"

    data = ExtractedReceiptData(
        amount=amount,
        date=receipt_date,
        merchant=merchant,
        payment_method=payment_method,
        description=description,
        confidence=FieldConfidence(
            amount=amount_confidence,
            date=date_confidence,
            merchant=merchant_confidence,
            payment_method=payment_confidence,
        ),
    )
    logger.debug(f"Extracted receipt fields: {data.to_dict()}")
    return data
