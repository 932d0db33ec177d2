"""
Faultline Rule Matcher

Resolves an outgoing request (method + URL) to at most one mock rule.

Features:
- First match wins, in rule table order
- Case-insensitive method comparison
- Query strings and trailing slashes ignored
- Named path parameters (``/api/user/:id``) with URL-decoded values
- Equal segment count required, no prefix matching
- Compiled patterns cached by raw pattern string
- Invalid patterns degrade to exact string equality
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import unquote

from ..common.url_utils import URLNormalizer
from .types import Rule

logger = logging.getLogger("faultline.engine")

_PARAM_RE = re.compile(r':([A-Za-z_][A-Za-z0-9_]*)')
_RESERVED_CHARS = set('()[]{}*+?!\\')


class PatternError(ValueError):
    """A rule URL pattern cannot be compiled."""


@dataclass
class PathMatch:
    """A successful path match with its extracted parameters."""

    path: str
    params: Dict[str, str] = field(default_factory=dict)


@dataclass
class MatchResult:
    """Result of matching a request against a rule table."""

    matched: bool
    rule: Optional[Rule] = None
    params: Dict[str, str] = field(default_factory=dict)
    reason: str = ""

    def to_dict(self) -> Dict[str, object]:
        """Convert to dictionary."""
        return {
            'matched': self.matched,
            'rule_id': self.rule.id if self.rule else None,
            'rule_url': self.rule.url if self.rule else None,
            'params': dict(self.params),
            'reason': self.reason,
        }


PathMatcher = Callable[[str], Optional[PathMatch]]


def _check_literal(literal: str, pattern: str) -> None:
    if ':' in literal:
        raise PatternError(f"Missing parameter name in pattern {pattern!r}")
    bad = _RESERVED_CHARS.intersection(literal)
    if bad:
        raise PatternError(f"Unexpected {''.join(sorted(bad))!r} in pattern {pattern!r}")


def compile_pattern(pattern: str) -> PathMatcher:
    """
    Compile a rule URL pattern into a segment matcher.

    Each ``:name`` becomes a parameter matching one non-empty segment
    (or part of one). The compiled matcher only accepts paths with the
    same number of segments as the pattern.

    Args:
        pattern: Normalized rule pattern (no query, no trailing slash)

    Returns:
        Callable returning a PathMatch or None

    Raises:
        PatternError: If the pattern has reserved characters, an unnamed
            parameter or a repeated parameter name
    """
    names: List[str] = []
    parts = []

    for index, segment in enumerate(pattern.split('/')):
        if index:
            parts.append('/')
        position = 0
        for param in _PARAM_RE.finditer(segment):
            literal = segment[position:param.start()]
            _check_literal(literal, pattern)
            parts.append(re.escape(literal))

            name = param.group(1)
            if name in names:
                raise PatternError(f"Duplicate parameter {name!r} in pattern {pattern!r}")
            names.append(name)
            parts.append(f'(?P<{name}>[^/]+?)')
            position = param.end()

        literal = segment[position:]
        _check_literal(literal, pattern)
        parts.append(re.escape(literal))

    regex = re.compile(''.join(parts), re.IGNORECASE)

    def matcher(path: str) -> Optional[PathMatch]:
        found = regex.fullmatch(path)
        if not found:
            return None
        params = {name: unquote(value) for name, value in found.groupdict().items()}
        return PathMatch(path=path, params=params)

    return matcher


def exact_matcher(pattern: str) -> PathMatcher:
    """Matcher accepting only the pattern string itself."""

    def matcher(path: str) -> Optional[PathMatch]:
        return PathMatch(path=path) if path == pattern else None

    return matcher


class RuleMatcher:
    """
    Matches requests against an ordered rule table.

    Example:
        matcher = RuleMatcher()
        rule = matcher.match(rules, '/api/user/123', 'GET')

        if rule:
            print(f"Mocked by {rule.id}")
    """

    def __init__(self, cache_max_size: int = 1000):
        """
        Initialize rule matcher.

        Args:
            cache_max_size: Maximum number of compiled patterns kept
                (FIFO eviction, 0 = unlimited)
        """
        self.cache_max_size = cache_max_size
        self.cache: Dict[str, PathMatcher] = {}
        self.cache_hits = 0
        self.cache_misses = 0

    def _get_matcher(self, pattern: str) -> PathMatcher:
        """Compiled matcher for a raw rule pattern, cached."""
        if pattern in self.cache:
            self.cache_hits += 1
            return self.cache[pattern]

        self.cache_misses += 1
        normalized = URLNormalizer.normalize_path(URLNormalizer.to_match_path(pattern))
        try:
            compiled = compile_pattern(normalized)
        except (PatternError, re.error) as e:
            logger.warning(f"Invalid rule pattern {pattern!r}, using exact match: {e}")
            compiled = exact_matcher(normalized)

        if self.cache_max_size and len(self.cache) >= self.cache_max_size:
            oldest_key = next(iter(self.cache))
            del self.cache[oldest_key]

        self.cache[pattern] = compiled
        return compiled

    def match_path(self, request_url: str, rule_url: str) -> Optional[PathMatch]:
        """
        Match a request URL against one rule pattern.

        Args:
            request_url: Request path or absolute URL
            rule_url: Rule pattern

        Returns:
            PathMatch with parameters, or None
        """
        request_path = URLNormalizer.normalize_path(URLNormalizer.to_match_path(request_url))
        rule_path = URLNormalizer.normalize_path(URLNormalizer.to_match_path(rule_url))

        # Fast path: exact match
        if request_path == rule_path:
            return PathMatch(path=request_path)

        return self._get_matcher(rule_url)(request_path)

    def url_matches(self, request_url: str, rule_url: str) -> bool:
        """True when the request URL matches the rule pattern."""
        return self.match_path(request_url, rule_url) is not None

    def find_match(self, rules: Sequence[Rule], request_url: str, method: str) -> MatchResult:
        """
        Find the first enabled rule matching the request.

        Args:
            rules: Rule table, in priority order
            request_url: Request path or absolute URL
            method: HTTP method

        Returns:
            MatchResult with the winning rule and its path parameters
        """
        method_upper = method.upper()

        for rule in rules:
            if not rule.enabled:
                continue
            if rule.method.upper() != method_upper:
                continue

            found = self.match_path(request_url, rule.url)
            if found is not None:
                return MatchResult(
                    matched=True,
                    rule=rule,
                    params=found.params,
                    reason=f"Matched rule {rule.id} ({rule.method} {rule.url})"
                )

        return MatchResult(matched=False, reason=f"No enabled rule matches {method_upper} {request_url}")

    def match(self, rules: Sequence[Rule], request_url: str, method: str) -> Optional[Rule]:
        """First enabled rule matching the request, or None."""
        return self.find_match(rules, request_url, method).rule

    def clear_cache(self) -> None:
        """Drop all compiled patterns."""
        self.cache.clear()
        self.cache_hits = 0
        self.cache_misses = 0


_default_matcher = RuleMatcher()


def url_matches(request_url: str, rule_url: str) -> bool:
    """Standalone check whether a request URL matches a rule pattern."""
    return _default_matcher.url_matches(request_url, rule_url)


def match_path(request_url: str, rule_url: str) -> Optional[PathMatch]:
    """Standalone path match returning extracted parameters."""
    return _default_matcher.match_path(request_url, rule_url)


def match_rule(rules: Sequence[Rule], request_url: str, method: str) -> Optional[Rule]:
    """Standalone rule lookup using a shared pattern cache."""
    return _default_matcher.match(rules, request_url, method)
