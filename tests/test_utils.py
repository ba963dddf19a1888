"""Hashing and id helpers."""

import re

from mostly_good_metrics.utils import (
    ANONYMOUS_ID_PREFIX,
    generate_anonymous_id,
    generate_uuid,
    identify_hash,
    rolling_hash,
    to_snake_case,
    variant_hash,
)


def test_anonymous_id_format():
    anon = generate_anonymous_id()
    assert anon.startswith(ANONYMOUS_ID_PREFIX)
    assert re.fullmatch(r"\$anon_[A-Za-z0-9]{12}", anon)
    assert generate_anonymous_id() != anon


def test_generate_uuid_is_v4():
    assert re.fullmatch(r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}", generate_uuid())


def test_rolling_hash_known_values():
    assert rolling_hash("", 0xFFFFFFFF) == 0
    assert rolling_hash("a", 0xFFFFFFFF) == 97
    # 97 * 31 + 98
    assert rolling_hash("ab", 0xFFFFFFFF) == 3105


def test_rolling_hash_stays_within_mask():
    long_value = "user-123|checkout_flow" * 20
    assert 0 <= rolling_hash(long_value, 0x7FFFFFFF) <= 0x7FFFFFFF


def test_variant_hash_is_deterministic():
    assert variant_hash("user-1", "exp") == variant_hash("user-1", "exp")
    assert variant_hash("user-1", "exp") == rolling_hash("user-1|exp", 0x7FFFFFFF)


def test_identify_hash_is_hex_and_profile_sensitive():
    h = identify_hash("user-1", "a@example.com", "Ann")
    assert re.fullmatch(r"[0-9a-f]+", h)
    assert h == identify_hash("user-1", "a@example.com", "Ann")
    assert h != identify_hash("user-1", "b@example.com", "Ann")
    assert identify_hash("user-1", None, None) == identify_hash("user-1", "", "")


def test_to_snake_case():
    assert to_snake_case("checkoutFlow") == "checkout_flow"
    assert to_snake_case("Checkout Flow") == "checkout_flow"
    assert to_snake_case("already_snake") == "already_snake"
    assert to_snake_case("new-onboarding--v2") == "new_onboarding_v2"
