"""
Faultline URL Utilities

Shared URL parsing and normalization used by rule matching and bypass checks.
"""

from urllib.parse import urlsplit, urljoin
from typing import List, Optional

DEFAULT_BASE_ORIGIN = 'http://localhost'


class URLNormalizer:
    """Handles URL normalization for rule matching."""

    @staticmethod
    def is_absolute(url: str) -> bool:
        """True for ``http://`` and ``https://`` URLs."""
        lowered = url.lower()
        return lowered.startswith('http://') or lowered.startswith('https://')

    @staticmethod
    def to_match_path(url: str) -> str:
        """
        Reduce an absolute URL to ``path + ?query``.

        Relative URLs are returned unchanged, so rules written as paths also
        match fully-qualified request URLs.

        Args:
            url: Request URL

        Returns:
            Path with query string
        """
        if not URLNormalizer.is_absolute(url):
            return url

        parsed = urlsplit(url)
        path = parsed.path or '/'
        return f"{path}?{parsed.query}" if parsed.query else path

    @staticmethod
    def normalize_path(url: str) -> str:
        """
        Strip the query string and a trailing slash (except for root).

        Args:
            url: Path, possibly with a query string

        Returns:
            Normalized path
        """
        pathname = url.split('?', 1)[0]
        if len(pathname) > 1 and pathname.endswith('/'):
            return pathname[:-1]
        return pathname

    @staticmethod
    def get_origin(url: str, base: str = DEFAULT_BASE_ORIGIN) -> Optional[str]:
        """
        Origin (``scheme://host[:port]``) of a URL.

        Relative URLs are resolved against ``base``. Returns None when the
        URL cannot be parsed.
        """
        try:
            parsed = urlsplit(urljoin(base + '/', url))
            if not parsed.scheme or not parsed.netloc:
                return None
            return f"{parsed.scheme}://{parsed.netloc}"
        except ValueError:
            return None


def normalize_prefix(prefix: str) -> str:
    """Give a prefix a leading slash and drop its trailing slash."""
    trimmed = prefix.strip()
    if not trimmed:
        return ''

    with_slash = trimmed if trimmed.startswith('/') else f"/{trimmed}"
    if len(with_slash) > 1 and with_slash.endswith('/'):
        return with_slash[:-1]
    return with_slash


def apply_match_config(url: str, strip_prefixes: List[str]) -> str:
    """
    Remove configured path prefixes before matching.

    Lets rules be written without a dev-proxy prefix such as ``/proxy``.
    Only the pathname is rewritten; query string and fragment are kept.
    Prefixes are applied in order.

    Args:
        url: Path (with optional query/fragment) to rewrite
        strip_prefixes: Prefixes to remove

    Returns:
        Rewritten URL

    Example:
        apply_match_config('/proxy/api/user?id=1', ['/proxy'])
        # -> '/api/user?id=1'
    """
    if not strip_prefixes:
        return url

    without_hash, hash_sep, fragment = url.partition('#')
    pathname, query_sep, query = without_hash.partition('?')

    for raw_prefix in strip_prefixes:
        if not isinstance(raw_prefix, str):
            continue
        prefix = normalize_prefix(raw_prefix)
        if not prefix or prefix == '/':
            continue

        if pathname == prefix:
            pathname = '/'
            continue

        if pathname.startswith(prefix + '/'):
            pathname = pathname[len(prefix):]

    return f"{pathname}{query_sep}{query}{hash_sep}{fragment}"
