"""
Utilities for recovering structure from free-text LLM responses.

The language model returns plain text only. Every parser here degrades to a
narrow, documented fallback instead of raising.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

_NUMBERED_ITEM = re.compile(r'^\s*\d+\s*[.)]\s*(.*)$')
_LIST_MARKER = re.compile(r'^[-•*\d.)\s]+')
_INTEGER = re.compile(r'-?\d+')


def clean_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned text
    """
    response = response.strip()

    if response.startswith('```'):
        response = response[3:]
        # Drop a language tag such as ```text
        first_newline = response.find('\n')
        if first_newline != -1 and ' ' not in response[:first_newline].strip():
            response = response[first_newline + 1:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def parse_numbered_list(response: str, limit: Optional[int] = None) -> List[str]:
    """Extract the items of a numbered list ("1. ...", "2) ...").

    Only numbered lines start items; text before the first item is ignored
    and later unnumbered lines are appended to the preceding item.

    Args:
        response: Raw LLM response
        limit: Maximum number of items to return

    Returns:
        List of item texts, possibly empty
    """
    items: List[str] = []
    current: Optional[List[str]] = None

    for line in clean_response(response).splitlines():
        match = _NUMBERED_ITEM.match(line)
        if match:
            if current is not None:
                items.append(' '.join(current).strip())
            current = [match.group(1).strip()]
        elif current is not None and line.strip():
            current.append(line.strip())

    if current is not None:
        items.append(' '.join(current).strip())

    items = [item for item in items if item]
    return items[:limit] if limit is not None else items


def parse_triple(response: str, description: str) -> Tuple[str, str, str]:
    """Parse a 'Subject: / Predicate: / Object:' response.

    Missing fields fall back independently: subject to the first word of the
    description, predicate to 'reflects on', object to the full description.

    Args:
        response: Raw LLM response (may be empty)
        description: Statement the triple summarizes

    Returns:
        Tuple of (subject, predicate, object)
    """
    fields: Dict[str, str] = {}
    for label in ('subject', 'predicate', 'object'):
        match = re.search(rf'{label}\s*:\s*(.+)', response or '', re.IGNORECASE)
        if match and match.group(1).strip():
            fields[label] = match.group(1).strip()

    words = description.split()
    return (fields.get('subject', words[0] if words else description),
            fields.get('predicate', 'reflects on'),
            fields.get('object', description))


def parse_rating(response: str, default: int = 5, low: int = 1, high: int = 10) -> int:
    """Parse an integer rating, clamped into [low, high].

    Args:
        response: Raw LLM response
        default: Value used when no integer is present
        low: Lower bound
        high: Upper bound

    Returns:
        Clamped integer rating
    """
    match = _INTEGER.search(response or '')
    if not match:
        return default
    return max(low, min(high, int(match.group(0))))


def parse_index_list(text: str, size: int) -> List[int]:
    """Parse comma separated zero-based indices, keeping only those in range.

    Non-numeric and out-of-range tokens are dropped; duplicates keep their
    first position.

    Args:
        text: Raw index text, e.g. "0, 2, 7"
        size: Length of the list the indices refer to

    Returns:
        Valid indices in order of appearance
    """
    indices: List[int] = []
    for token in re.split(r'[,\s;]+', text or ''):
        token = token.strip().strip('[]().')
        if not token.lstrip('-').isdigit():
            continue
        idx = int(token)
        if 0 <= idx < size and idx not in indices:
            indices.append(idx)
    return indices


def parse_list_items(text: str) -> List[str]:
    """Split a block into lines and strip leading bullet/number markers."""
    items = []
    for line in (text or '').splitlines():
        item = _LIST_MARKER.sub('', line).strip()
        if item:
            items.append(item)
    return items


def parse_sections(response: str, headers: Sequence[str]) -> Dict[str, List[str]]:
    """Split a response into labelled sections and parse each into list items.

    A header that does not appear yields an empty list.

    Args:
        response: Raw LLM response
        headers: Section labels in expected order, e.g. ('KEY INSIGHTS', 'UNRESOLVED')

    Returns:
        Mapping of header to list of items
    """
    sections: Dict[str, List[str]] = {header: [] for header in headers}
    pattern = '|'.join(re.escape(header) for header in headers)
    matches = list(re.finditer(rf'(?:^|\n)[\s#*\d.)-]*({pattern})\s*\**\s*:', response or '', re.IGNORECASE))

    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(response)
        header = next(h for h in headers if h.lower() == match.group(1).lower())
        sections[header] = parse_list_items(response[match.end():end])

    return sections
