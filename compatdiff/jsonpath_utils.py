"""Path utilities: JSONPath lookups and dotted change-path matching."""

from __future__ import annotations

import re
from typing import Any

from jsonpath_ng import parse as jsonpath_parse
from jsonpath_ng.exceptions import JsonPathParserError


class JSONPathMatcher:
    """Utility class for JSONPath evaluation against report dicts."""

    # Cache for compiled JSONPath expressions
    _cache: dict = {}

    @classmethod
    def compile(cls, path: str):
        """Compile and cache a JSONPath expression."""
        if path not in cls._cache:
            try:
                cls._cache[path] = jsonpath_parse(path)
            except JsonPathParserError as e:
                raise ValueError(f"Invalid JSONPath expression '{path}': {e}")
        return cls._cache[path]

    @classmethod
    def find_values(cls, data: Any, path: str) -> list[Any]:
        """Find all values matching a JSONPath expression."""
        expr = cls.compile(path)
        return [m.value for m in expr.find(data)]


def split_path(path: str) -> list[str]:
    """Split a dotted change path into segments."""
    return [segment for segment in path.split('.') if segment != '']


def matches_prefix(path: str, pattern: str) -> bool:
    """
    Check if a dotted change path falls under an ignore pattern.

    Supports:
    - Prefix match: "types.User" covers "types.User.properties.email"
      but not "types.UserProfile"
    - Segment wildcard: "endpoints.*.DELETE" covers any DELETE endpoint

    Patterns without "*" match on whole segments.
    """
    if not pattern:
        return False

    if '*' not in pattern:
        return path == pattern or path.startswith(pattern + '.')

    pattern_segments = split_path(pattern)
    path_segments = split_path(path)
    if len(path_segments) < len(pattern_segments):
        return False

    for expected, actual in zip(pattern_segments, path_segments):
        if expected == '*':
            continue
        if '*' in expected:
            regex = '^' + re.escape(expected).replace(r'\*', '.*') + '$'
            if not re.match(regex, actual):
                return False
        elif expected != actual:
            return False

    return True


def is_ignored(path: str, ignore_paths: list[str]) -> bool:
    """True if any ignore pattern covers the path."""
    return any(matches_prefix(path, pattern) for pattern in ignore_paths)
