import re
from urllib.parse import urlparse

from mediadl.core.entities import Platform

# Domain -> platform. A host matches a domain or any of its subdomains.
_HOST_RULES = (
    (("youtube.com", "youtu.be"), Platform.YOUTUBE),
    (("tiktok.com",), Platform.TIKTOK),
    (("instagram.com",), Platform.INSTAGRAM),
    (("facebook.com", "fb.com", "fb.watch"), Platform.FACEBOOK),
    (("twitter.com", "x.com"), Platform.TWITTER),
    (("fshare.vn",), Platform.FSHARE),
)

_FACEBOOK_PHOTO_RE = re.compile(r"/photo\?|/photo\.php|/photos/|/photo/", re.IGNORECASE)


def _hostname(url: str):
    if not isinstance(url, str) or not url.strip():
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    try:
        host = parsed.hostname
    except ValueError:
        return None
    return host.lower() if host else None


def detect_platform(url: str) -> Platform:
    """
    Identify the platform for a given URL from its host only.

    Returns:
        A Platform; Platform.UNKNOWN for unmatched or malformed URLs.
    """
    host = _hostname(url)
    if not host:
        return Platform.UNKNOWN
    for domains, platform in _HOST_RULES:
        if any(host == domain or host.endswith("." + domain) for domain in domains):
            return platform
    return Platform.UNKNOWN


def is_supported(url: str) -> bool:
    return detect_platform(url) is not Platform.UNKNOWN


def is_facebook_photo(url: str) -> bool:
    return bool(_FACEBOOK_PHOTO_RE.search(url or ""))
