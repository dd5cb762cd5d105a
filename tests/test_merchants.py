from datetime import date

from merchants import (
    deduplication_hash,
    detect_recurring,
    extract_merchant_from_description,
    get_category_for_merchant,
    normalize_merchant,
)


def test_normalize_merchant_resolves_aliases() -> None:
    assert normalize_merchant("NETFLIX.COM") == "netflix"
    assert normalize_merchant("Etisalat") == "9mobile"
    assert normalize_merchant("DisneyPlus.com") == "disney plus"


def test_normalize_merchant_strips_legal_suffix() -> None:
    assert normalize_merchant("Tunde Stores Limited") == "tunde stores"
    assert normalize_merchant("  Kemi   Bakery  Ltd ") == "kemi bakery"


def test_category_lookup_prefers_specific_patterns() -> None:
    assert get_category_for_merchant("Amazon Prime Video") == "entertainment"
    assert get_category_for_merchant("Amazon") == "shopping"
    assert get_category_for_merchant("Whole Foods Market") == "food-dining"
    assert get_category_for_merchant(None, "netflix") == "entertainment"


def test_category_lookup_unknown_merchant() -> None:
    assert get_category_for_merchant("zzqx") is None
    assert get_category_for_merchant(None) is None
    assert get_category_for_merchant("   ") is None


def test_extract_merchant_from_nigerian_descriptions() -> None:
    assert extract_merchant_from_description("POS PURCHASE - SHOPRITE LEKKI 12345") == "shoprite"
    assert extract_merchant_from_description("Transfer to Adaeze Okafor") == "adaeze okafor"


def test_extract_merchant_falls_back_to_alias_scan() -> None:
    assert extract_merchant_from_description("DSTV SUBSCRIPTION RENEWAL") == "dstv"


def test_extract_merchant_handles_empty_description() -> None:
    assert extract_merchant_from_description(None) is None
    assert extract_merchant_from_description("") is None


def test_detect_recurring_keywords() -> None:
    assert detect_recurring("DSTV", None)
    assert detect_recurring(None, "Monthly gym dues")
    assert not detect_recurring("Shoprite", "groceries")


def test_deduplication_hash_is_stable_and_sign_insensitive() -> None:
    day = date(2024, 3, 5)
    first = deduplication_hash(day, -5000.0, "shoprite")
    assert len(first) == 32
    assert first == deduplication_hash(day, 5000.0, "shoprite")
    assert first != deduplication_hash(date(2024, 3, 6), 5000.0, "shoprite")


def test_deduplication_hash_uses_description_without_merchant() -> None:
    day = date(2024, 3, 5)
    assert deduplication_hash(day, 100.0, None, "Airtime top-up") != deduplication_hash(
        day, 100.0, None, "Data bundle"
    )
    assert deduplication_hash(day, 100.0, None, "Airtime top-up!") == deduplication_hash(
        day, 100.0, None, "airtime   top-up"
    )
