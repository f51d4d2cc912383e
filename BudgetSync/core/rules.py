"""Color rules: resolve a calendar event color to a transaction template.

Rules are an ordered sequence. Resolution is a single pass that returns on the
first matching rule, so a later rule for the same color is never applied.
"""
import logging
from typing import Iterable, List, Optional, Sequence

from .models import ColorMapping


def resolve_mapping(color_id: Optional[str], mappings: Iterable[ColorMapping]) -> Optional[ColorMapping]:
    """Return the first mapping whose color id equals the event's color.

    Args:
        color_id: The event color id, may be None or empty.
        mappings: Ordered color rules, usually the settings snapshot of the current cycle.

    Returns:
        Optional[ColorMapping]: The winning rule, or None if no rule matches.
    """
    if not color_id:
        return None

    for mapping in mappings:
        if mapping.color_id == color_id:
            return mapping
    return None


def unreachable_mappings(mappings: Sequence[ColorMapping]) -> List[ColorMapping]:
    """List rules shadowed by an earlier rule for the same color.

    Args:
        mappings: Ordered color rules.

    Returns:
        List[ColorMapping]: Rules that can never be applied.
    """
    seen = set()
    shadowed: List[ColorMapping] = []
    for mapping in mappings:
        if mapping.color_id in seen:
            shadowed.append(mapping)
            continue
        seen.add(mapping.color_id)

    if shadowed:
        logging.debug(f'Found {len(shadowed)} unreachable color mapping(s).')
    return shadowed
