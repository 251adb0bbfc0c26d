"""Decay-class assignment for new knowledge.

Rules are checked in order and the first match wins:

1. core: credentials, agent rules, sheet/deployment ids, or a 'core' tag.
2. architecture: system design topics, or an 'architecture' tag.
3. decision: rationale records ('decision' tag or topic).
4. pattern: everything else.

Matching is case-insensitive; topics match by substring, tags exactly.
"""

from .models import ARCHITECTURE_TAG, CORE_TAG, DECISION_TAG, MemoryType

CORE_TOPIC_MARKERS: tuple[str, ...] = (
    "agent-rules",
    "sheet-ids",
    "api-key",
    "credentials",
    "deployment-id",
)

ARCHITECTURE_TOPIC_MARKERS: tuple[str, ...] = (
    "cms-api",
    "gas-webhook",
    "pricing",
    "stripe-api",
    "infrastructure",
    "architecture",
    "invoice-pdf",
)

DECISION_TOPIC_MARKERS: tuple[str, ...] = ("decision",)


def classify(topic: str, tags: list[str] | None = None) -> MemoryType:
    """Assign a decay class from topic and tags.

    Args:
        topic: The entry topic.
        tags: The entry tags.

    Returns:
        The matching MemoryType, PATTERN when no rule applies.

    Example:
        >>> classify("stripe-config", ["core"])
        <MemoryType.CORE: 'core'>
        >>> classify("pricing-v2")
        <MemoryType.ARCHITECTURE: 'architecture'>
    """
    t = topic.lower()
    all_tags = {tag.lower() for tag in tags or []}

    if CORE_TAG in all_tags or any(m in t for m in CORE_TOPIC_MARKERS):
        return MemoryType.CORE

    if ARCHITECTURE_TAG in all_tags or any(m in t for m in ARCHITECTURE_TOPIC_MARKERS):
        return MemoryType.ARCHITECTURE

    if DECISION_TAG in all_tags or any(m in t for m in DECISION_TOPIC_MARKERS):
        return MemoryType.DECISION

    return MemoryType.PATTERN
