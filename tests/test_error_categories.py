"""
Unit tests for user-facing error categories
"""

import pytest

from src.utils.error_categories import (
    API_LIMIT,
    GENERATION_FAILED,
    NETWORK_ERROR,
    POLICY_VIOLATION,
    SERVER_ERROR,
    TIMEOUT,
    TOKEN_EXPIRED,
    VEO_POLICY_VIOLATION,
    categorize_error,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("400 INVALID_ARGUMENT: prompt contains disallowed content", POLICY_VIOLATION),
        ("RESOURCE_EXHAUSTED: Quota exceeded for project", API_LIMIT),
        ("Rate limit hit, slow down", API_LIMIT),
        ("upstream request timed out after 60s", TIMEOUT),
        ("Response blocked by safety filters", POLICY_VIOLATION),
        ("401 Unauthorized", TOKEN_EXPIRED),
        ("Connection refused", NETWORK_ERROR),
        ("Internal server error", SERVER_ERROR),
        ("HTTP 500", SERVER_ERROR),
        ("Video generation failed", POLICY_VIOLATION),
        ("PUBLIC_ERROR_SOMETHING_NEW", VEO_POLICY_VIOLATION),
        ("something odd happened", GENERATION_FAILED),
    ],
)
def test_categorize_error(raw, expected):
    assert categorize_error(raw) == expected


def test_first_matching_rule_wins():
    """Quota wording beats the generic server marker"""
    assert categorize_error("server quota exhausted (500)") == API_LIMIT


def test_empty_and_already_categorized():
    assert categorize_error(None) == GENERATION_FAILED
    assert categorize_error("") == GENERATION_FAILED
    assert categorize_error(TOKEN_EXPIRED) == TOKEN_EXPIRED
