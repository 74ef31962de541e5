"""Identifier normalization and duplicate confidence (unit)."""

import os

import pytest

os.environ.setdefault("JWT_SECRET", "unit-test-secret")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from devcrm.services.identity import combine_confidences, normalize_identifier


@pytest.mark.parametrize(
    "kind, raw, expected",
    [
        ("email", "  Alice@Example.COM ", "alice@example.com"),
        ("domain", "Example.DEV", "example.dev"),
        ("phone", "+81 (90) 1234-5678", "+819012345678"),
        ("mlid", "  MixedCase-ID ", "MixedCase-ID"),
    ],
)
def test_normalize_identifier(kind, raw, expected) -> None:
    assert normalize_identifier(kind, raw) == expected


def test_unknown_kind_is_rejected() -> None:
    with pytest.raises(ValueError):
        normalize_identifier("fax", "123")


def test_combine_confidences() -> None:
    assert combine_confidences([]) == 0.0
    assert combine_confidences([0.9]) == pytest.approx(0.9)
    assert combine_confidences([0.9, 0.5]) == pytest.approx(0.95)
    assert combine_confidences([1.0, 0.2]) == pytest.approx(1.0)
