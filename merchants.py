"""Merchant name normalisation and merchant-to-category lookup.

Category values are the expense category slugs used across the app
(``food-dining``, ``transportation``, ``entertainment``, ``utilities``,
``shopping``, ``healthcare``).
"""

import hashlib
import re
from datetime import date
from typing import Optional


# Checked before MERCHANT_CATEGORY_MAP, most specific first, so that
# "amazon prime" is not filed under "amazon".
SPECIFIC_PATTERNS: list[tuple[str, str]] = [
    ("amazon prime", "entertainment"),
    ("prime video", "entertainment"),
    ("disney plus", "entertainment"),
    ("disney+", "entertainment"),
    ("hbo max", "entertainment"),
    ("paramount plus", "entertainment"),
    ("paramount+", "entertainment"),
    ("apple tv", "entertainment"),
    ("peacock", "entertainment"),
    ("hulu", "entertainment"),
    ("youtube premium", "entertainment"),
    ("whole foods", "food-dining"),
    ("trader joes", "food-dining"),
    ("trader joe", "food-dining"),
    ("planet fitness", "healthcare"),
    ("equinox", "healthcare"),
    ("orangetheory", "healthcare"),
    ("gympass", "healthcare"),
    ("anytime fitness", "healthcare"),
    ("at&t wireless", "utilities"),
    ("att wireless", "utilities"),
    ("at&t", "utilities"),
    ("att", "utilities"),
    ("austin energy", "utilities"),
    ("t-mobile", "utilities"),
    ("verizon", "utilities"),
    ("comcast", "utilities"),
    ("xfinity", "utilities"),
    ("spectrum", "utilities"),
    ("mtn", "utilities"),
    ("glo", "utilities"),
    ("airtel", "utilities"),
    ("9mobile", "utilities"),
]


def _category(slug: str, *names: str) -> dict[str, str]:
    return {name: slug for name in names}


MERCHANT_CATEGORY_MAP: dict[str, str] = {
    **_category(
        "food-dining",
        "whole foods", "trader joes", "kroger", "publix", "h-e-b", "heb",
        "costco", "aldi", "safeway", "chipotle", "chick-fil-a", "chickfila",
        "mcdonalds", "starbucks", "taco bell", "panda express", "wendys",
        "subway", "five guys", "in-n-out", "whataburger", "torchys",
        "torchy's", "uchi", "flemings", "fleming's", "jeffreys", "jeffrey's",
        "atlas coffee", "doordash", "grubhub", "uber eats", "ubereats",
        "instacart", "postmates", "chowdeck", "glovo", "jumia food",
        "shoprite", "spar", "buc-ee's", "bucees",
    ),
    **_category(
        "transportation",
        "shell", "shell oil", "chevron", "exxon", "bp", "uber", "lyft",
        "bolt", "citgo", "marathon", "valero",
    ),
    **_category(
        "entertainment",
        "netflix", "spotify", "apple music", "disney plus", "amazon prime",
        "hbo max", "hulu", "paramount plus", "apple tv", "peacock", "youtube",
        "amc theaters", "amc", "alamo drafthouse", "regal", "dstv", "gotv",
        "startimes",
    ),
    **_category(
        "utilities",
        "austin energy", "att wireless", "at&t", "t-mobile", "verizon",
        "comcast", "xfinity", "spectrum", "texas gas", "mtn", "glo",
        "airtel", "9mobile",
    ),
    **_category(
        "shopping",
        "amazon", "apple store", "apple", "best buy", "target", "walmart",
        "walgreens", "cvs pharmacy", "cvs", "home depot", "lowes", "ikea",
        "nordstrom", "macys", "jumia", "game stores",
    ),
    **_category(
        "healthcare",
        "planet fitness", "equinox", "orangetheory", "gympass",
        "anytime fitness", "headspace", "calm", "strava",
    ),
}


MERCHANT_ALIASES: dict[str, list[str]] = {
    "netflix": ["netflix", "netflix.com", "netflix inc"],
    "spotify": ["spotify", "spotify ab", "spotify.com"],
    "apple music": ["apple music", "itunes", "apple.com/bill"],
    "youtube": ["youtube", "youtube premium", "google youtube"],
    "amazon prime": ["amazon prime", "prime video", "amzn prime"],
    "disney plus": ["disney plus", "disney+", "disneyplus", "disneyplus.com"],
    "hulu": ["hulu", "hulu llc"],
    "hbo max": ["hbo max", "hbo", "max.com"],
    "paramount plus": ["paramount+", "paramount plus"],
    "apple tv": ["apple tv", "apple tv+"],
    "peacock": ["peacock", "peacock tv"],
    "dstv": ["dstv", "multichoice", "dstv subscription"],
    "gotv": ["gotv", "gotv subscription"],
    "startimes": ["startimes", "star times"],
    "mtn": ["mtn", "mtn nigeria", "mtn ng"],
    "glo": ["glo", "globacom", "glo ng"],
    "airtel": ["airtel", "airtel nigeria", "airtel ng"],
    "9mobile": ["9mobile", "etisalat", "9mobile ng"],
    "jumia": ["jumia", "jumia food", "jumia.com"],
    "uber eats": ["uber eats", "ubereats"],
    "glovo": ["glovo"],
    "chowdeck": ["chowdeck"],
    "doordash": ["doordash", "door dash"],
    "grubhub": ["grubhub", "grub hub"],
    "instacart": ["instacart"],
    "postmates": ["postmates"],
    "uber": ["uber", "uber bv", "uber trip"],
    "bolt": ["bolt", "bolt eu", "bolt ride"],
    "lyft": ["lyft", "lyft inc"],
    "icloud": ["icloud", "apple icloud", "apple.com/bill icloud"],
    "google": ["google", "google play", "google.com"],
    "microsoft": ["microsoft", "ms365", "office 365"],
    "dropbox": ["dropbox"],
    "adobe": ["adobe", "adobe systems"],
    "amazon": ["amazon", "amzn", "amazon.com", "amzn mktp"],
    "walmart": ["walmart", "wal-mart", "wal mart"],
    "target": ["target"],
    "costco": ["costco", "costco wholesale"],
    "whole foods": ["whole foods", "wholefds", "wholefoods"],
    "trader joes": ["trader joe", "trader joes"],
    "kroger": ["kroger"],
    "publix": ["publix"],
    "shell": ["shell", "shell oil"],
    "chevron": ["chevron"],
    "exxon": ["exxon", "exxonmobil"],
    "bp": ["bp"],
    "shoprite": ["shoprite", "shoprite nigeria"],
    "spar": ["spar", "spar nigeria"],
    "game stores": ["game stores", "game nigeria"],
    "starbucks": ["starbucks"],
    "chick-fil-a": ["chick-fil-a", "chick fil a", "chickfila"],
    "chipotle": ["chipotle"],
    "mcdonalds": ["mcdonalds", "mcdonald's", "mcd"],
}


NIGERIAN_DESCRIPTION_PATTERNS = [
    re.compile(r"POS\s+(?:PURCHASE|PAYMENT)\s*[-:]\s*(.+?)(?:\s+\d|$)", re.I),
    re.compile(r"Transfer\s+to\s+(.+?)(?:\s+\d|$)", re.I),
    re.compile(r"WEB\s+(?:PURCHASE|PAYMENT)\s*[-:]\s*(.+?)(?:\s+\d|$)", re.I),
    re.compile(r"USSD\s*[-:]\s*(.+?)(?:\s+\d|$)", re.I),
]

INTERNATIONAL_DESCRIPTION_PATTERNS = [
    re.compile(
        r"(?:PURCHASE|PAYMENT|RECURRING)\s+(?:AUTHORIZED|AUTH)\s+"
        r"(?:ON\s+\d{2}/\d{2}\s+)?(.+?)(?:\s+CARD\s+\d|$)",
        re.I,
    ),
    re.compile(
        r"(?:DEBIT\s+)?CARD\s+PURCHASE\s*[-:]\s*(.+?)(?:\s+\d{5}|\s+[A-Z]{2}\s*$)",
        re.I,
    ),
    re.compile(r"ACH\s+(?:DEBIT|CREDIT|PAYMENT)\s+(.+?)(?:\s+\d|$)", re.I),
    re.compile(
        r"DIRECT\s+DEP(?:OSIT)?\s+(.+?)(?:\s+PAYROLL|\s+SALARY|\s+PAY\s|$)", re.I
    ),
    re.compile(
        r"CHECK\s+CARD\s+(?:PURCHASE\s+)?(.+?)(?:\s+\d{4,}|\s+[A-Z]{2}\s*$)", re.I
    ),
    re.compile(
        r"(?:VENMO|ZELLE|CASHAPP|PAYPAL)\s+(?:PAYMENT|TRANSFER|SENT)?\s*(?:TO\s+)?(.+?)$",
        re.I,
    ),
]

_CLEANUP_PATTERNS = [
    re.compile(r"^(?:POS|DEBIT|CREDIT|ACH|CHECK CARD|PURCHASE|PAYMENT)\s*", re.I),
    re.compile(r"\s+#?\d{4,}.*$", re.I),
    re.compile(r"\s+[A-Z]{2}\s*\d{5}.*$", re.I),
    re.compile(r"\s+[A-Z]{2}\s*$", re.I),
]

_LEGAL_SUFFIX = re.compile(r"\s+(ltd|limited|inc|corp|llc|plc|nigeria|ng)\s*$", re.I)

RECURRING_KEYWORDS = (
    "netflix",
    "spotify",
    "apple",
    "google",
    "amazon prime",
    "dstv",
    "gotv",
    "startimes",
    "icloud",
    "youtube",
    "microsoft",
    "dropbox",
    "subscription",
    "recurring",
    "monthly",
    "annual",
)


def get_category_for_merchant(
    merchant: Optional[str], normalized_merchant: Optional[str] = None
) -> Optional[str]:
    candidates = [
        name.lower().strip()
        for name in (normalized_merchant, merchant)
        if name and name.strip()
    ]
    for name in candidates:
        for pattern, category in SPECIFIC_PATTERNS:
            if pattern in name:
                return category
        if name in MERCHANT_CATEGORY_MAP:
            return MERCHANT_CATEGORY_MAP[name]
        for key, category in MERCHANT_CATEGORY_MAP.items():
            if key in name or name in key:
                return category
    return None


def _match_alias(text: str) -> Optional[str]:
    for canonical, aliases in MERCHANT_ALIASES.items():
        if any(alias in text for alias in aliases):
            return canonical
    return None


def normalize_merchant(name: str) -> str:
    normalized = re.sub(r"[^\w\s-]", "", name.lower().strip())
    normalized = re.sub(r"\s+", " ", normalized)
    canonical = _match_alias(normalized)
    if canonical:
        return canonical
    return _LEGAL_SUFFIX.sub("", normalized).strip()


def extract_merchant_from_description(description: Optional[str]) -> Optional[str]:
    if not description:
        return None

    for pattern in NIGERIAN_DESCRIPTION_PATTERNS:
        match = pattern.search(description)
        if match and match.group(1):
            return normalize_merchant(match.group(1))

    for pattern in INTERNATIONAL_DESCRIPTION_PATTERNS:
        match = pattern.search(description)
        if match and match.group(1) and len(match.group(1).strip()) > 1:
            return normalize_merchant(match.group(1).strip())

    canonical = _match_alias(description.lower())
    if canonical:
        return canonical

    cleaned = description
    for pattern in _CLEANUP_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) >= 3:
        return normalize_merchant(cleaned)
    return None


def detect_recurring(merchant: Optional[str], description: Optional[str]) -> bool:
    text = f"{merchant or ''} {description or ''}".lower()
    return any(keyword in text for keyword in RECURRING_KEYWORDS)


def deduplication_hash(
    day: date,
    amount: float,
    normalized_merchant: Optional[str],
    description: Optional[str] = None,
) -> str:
    identifier = normalized_merchant or ""
    if not identifier and description:
        snippet = re.sub(r"[^\w\s]", "", description.lower())
        identifier = re.sub(r"\s+", " ", snippet).strip()[:40]
    payload = f"{day.isoformat()}|{abs(amount):.2f}|{identifier}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]
