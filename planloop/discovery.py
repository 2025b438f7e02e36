"""
Discovery level detection for phase research.

Determines how much research a phase needs before planning, based on
keywords in its description. Rules are an ordered table evaluated top-down;
the first tier with a matching keyword wins, so broad, risky categories are
checked before narrow, safe ones. With no match the level is QUICK.
"""

import re
from enum import IntEnum
from typing import FrozenSet, List, Tuple


class DiscoveryLevel(IntEnum):
    """Research depth tier."""
    SKIP = 0
    QUICK = 1
    STANDARD = 2
    DEEP = 3


# Architectural or high-risk work
DEEP_KEYWORDS = frozenset({
    "architecture", "architectural", "auth system", "authentication system",
    "data model", "data modeling", "data modelling", "schema design",
    "multi-service", "microservice", "microservices", "distributed",
    "machine learning", "ml", "model training",
    "real-time", "realtime", "websocket", "websockets",
    "graphics", "rendering", "shader", "3d",
    "security model",
})

# Choosing between options or wiring in third parties
STANDARD_KEYWORDS = frozenset({
    "choose", "compare", "evaluate", "select", "which library",
    "integrate", "integration", "third-party", "third party", "api client",
    "stripe", "payment", "payments", "billing", "checkout",
    "storage provider", "s3", "email provider", "sendgrid", "twilio", "oauth",
})

# Small, well-trodden changes
QUICK_KEYWORDS = frozenset({
    "add", "update", "small", "simple", "tweak", "endpoint",
    "field", "validation", "config", "setting",
})

# Pure internal work
SKIP_KEYWORDS = frozenset({
    "refactor", "cleanup", "clean up", "rename", "internal", "styling",
    "formatting", "format", "lint", "typo", "docs", "comment", "docstring",
})

DISCOVERY_RULES: List[Tuple[DiscoveryLevel, FrozenSet[str]]] = [
    (DiscoveryLevel.DEEP, DEEP_KEYWORDS),
    (DiscoveryLevel.STANDARD, STANDARD_KEYWORDS),
    (DiscoveryLevel.QUICK, QUICK_KEYWORDS),
    (DiscoveryLevel.SKIP, SKIP_KEYWORDS),
]

DEFAULT_LEVEL = DiscoveryLevel.QUICK


def _contains_keyword(text: str, keyword: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", text) is not None


def detect_discovery_level(
    description: str,
    rules: List[Tuple[DiscoveryLevel, FrozenSet[str]]] = DISCOVERY_RULES,
) -> Tuple[DiscoveryLevel, str]:
    """
    Detect how much research is needed for a phase.

    Args:
        description: The phase goal/description
        rules: Ordered (level, keywords) table, first match wins

    Returns:
        Tuple of (level, reason)
    """
    text = description.lower()
    for level, keywords in rules:
        matched = sorted(kw for kw in keywords if _contains_keyword(text, kw))
        if matched:
            return level, f"{level.name.lower()} keyword: {matched[0]}"
    return DEFAULT_LEVEL, "no keywords matched, defaulting to quick"


def classify(description: str) -> DiscoveryLevel:
    """Map a phase description to a research-depth tier."""
    level, _ = detect_discovery_level(description)
    return level


def get_level_description(level: int) -> str:
    """Get human-readable description of discovery level."""
    descriptions = {
        0: "Skip - No research needed (internal work)",
        1: "Quick - Single library or doc lookup",
        2: "Standard - Compare options and choose",
        3: "Deep - Architectural research required",
    }
    return descriptions.get(int(level), f"Unknown level: {level}")
