"""
User-facing error categories for generation failures

Raw upstream errors are long and technical; history rows and stream events
carry one of these short messages so the UI can suggest the right fix
(edit the prompt vs. wait and retry).
"""

from typing import Optional

POLICY_VIOLATION = "Policy violation - Edit prompt"
API_LIMIT = "API limit reached"
TIMEOUT = "Request timed out"
TOKEN_EXPIRED = "Token expired"
NETWORK_ERROR = "Network error"
SERVER_ERROR = "Server error"
VEO_POLICY_VIOLATION = "VEO3.1 Policy Violation"
GENERATION_FAILED = "Generation failed"

# Checked in order, first match wins
_RULES = (
    (("invalid_argument",), POLICY_VIOLATION),
    (("quota", "rate limit"), API_LIMIT),
    (("timeout", "timed out"), TIMEOUT),
    (("safety", "blocked"), POLICY_VIOLATION),
    (("unauthorized", "authentication"), TOKEN_EXPIRED),
    (("network", "connection"), NETWORK_ERROR),
    (("server", "500"), SERVER_ERROR),
    (("video generation failed", "image generation failed"), POLICY_VIOLATION),
    (("public_error",), VEO_POLICY_VIOLATION),
)

ALL_CATEGORIES = frozenset(
    {message for _, message in _RULES} | {GENERATION_FAILED}
)


def categorize_error(raw: Optional[str]) -> str:
    """
    Map a raw error string to a short category

    Args:
        raw: Upstream error message (any case)

    Returns:
        One of the category constants
    """
    if not raw:
        return GENERATION_FAILED

    if raw in ALL_CATEGORIES:
        return raw

    text = raw.lower()
    for needles, message in _RULES:
        if any(needle in text for needle in needles):
            return message
    return GENERATION_FAILED
