"""The closed category whitelist and the rules that keep records inside it."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class Category(str, Enum):
    """Memory categories. The set is fixed; nothing extends it at runtime."""

    CHAT = "chat"  # user-assistant conversations
    SYSTEM = "system"  # system events and changes
    DOMAIN_EVENT = "domain_event"  # product-specific events
    USER_ACTION = "user_action"  # user actions in the admin
    CONTEXTUAL = "contextual"  # site-specific contextual information


VALID_CATEGORIES: tuple[str, ...] = tuple(c.value for c in Category)

CHAT_TYPES = frozenset({"user_message", "assistant_response"})


def derive_category(memory_type: str, category: str | None = None) -> str:
    """Pick the category a record is stored under.

    An absent category is derived from the type; one outside the
    whitelist is forced to ``system``.
    """
    if category is None or category == "":
        return Category.CHAT.value if memory_type in CHAT_TYPES else Category.SYSTEM.value
    if category not in VALID_CATEGORIES:
        return Category.SYSTEM.value
    return category


def normalize_categories(categories: str | Iterable[str] | None) -> tuple[str, ...]:
    """Reduce a category filter to a non-empty subset of the whitelist.

    A single string is a one-element selection. Unknown entries are
    dropped. ``None``, an empty selection, or one with no valid entry
    means every category. Order follows the whitelist.
    """
    if categories is None:
        return VALID_CATEGORIES
    if isinstance(categories, str):
        categories = [categories]
    wanted = {str(getattr(c, "value", c)) for c in categories}
    selected = tuple(c for c in VALID_CATEGORIES if c in wanted)
    return selected or VALID_CATEGORIES


def is_full_selection(categories: Iterable[str]) -> bool:
    """True when ``categories`` covers the whole whitelist (no restriction)."""
    return set(categories) >= set(VALID_CATEGORIES)
