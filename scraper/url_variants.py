"""Fallback URL bases for sites with host or scheme routing quirks."""
from typing import List
from urllib.parse import urlsplit, urlunsplit


def _strip_trailing_slashes(url: str) -> str:
    return url.rstrip('/')


def _toggle_www(netloc: str) -> str:
    userinfo, _, hostport = netloc.rpartition('@')
    if hostport.lower().startswith('www.'):
        hostport = hostport[4:]
    else:
        hostport = f"www.{hostport}"
    return f"{userinfo}@{hostport}" if userinfo else hostport


def build_url_variants(base_url: str) -> List[str]:
    """
    Build ordered, deduplicated candidate bases for a URL.

    Order is original, host toggled (www <-> bare), scheme toggled
    (http <-> https), then both toggled. Inputs that do not parse as an
    absolute URL yield only the normalized original.

    Args:
        base_url: Site base URL

    Returns:
        Candidate bases without trailing slashes, original first
    """
    normalized = _strip_trailing_slashes(base_url.strip())
    candidates = [normalized]

    parts = urlsplit(normalized)
    if parts.scheme and parts.hostname:
        host_variant = parts._replace(netloc=_toggle_www(parts.netloc))
        candidates.append(_strip_trailing_slashes(urlunsplit(host_variant)))

        if parts.scheme in ('http', 'https'):
            other_scheme = 'http' if parts.scheme == 'https' else 'https'
            scheme_variant = parts._replace(scheme=other_scheme)
            candidates.append(_strip_trailing_slashes(urlunsplit(scheme_variant)))
            both_variant = host_variant._replace(scheme=other_scheme)
            candidates.append(_strip_trailing_slashes(urlunsplit(both_variant)))

    return list(dict.fromkeys(candidates))
