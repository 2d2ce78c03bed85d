import re
from typing import List, Optional

from bs4 import BeautifulSoup

_FBID_RE = re.compile(r"fbid=(\d+)")
_ALT_ID_PATTERNS = (
    re.compile(r"/photos/[^/]+/(\d+)"),
    re.compile(r"/photo/(\d+)"),
    re.compile(r"photo_id=(\d+)"),
    re.compile(r"/(\d{15,})"),
)

_CDN_TEMPLATES = (
    # High resolution
    "https://scontent.xx.fbcdn.net/v/t39.30808-6/{id}_n.jpg",
    "https://scontent.xx.fbcdn.net/v/t1.6435-9/{id}_n.jpg",
    "https://scontent.xx.fbcdn.net/v/t1.0-9/{id}_n.jpg",
    "https://scontent.xx.fbcdn.net/v/t31.18172-8/{id}_o.jpg",
    # Regional servers
    "https://scontent-lax3-1.xx.fbcdn.net/v/t39.30808-6/{id}_n.jpg",
    "https://scontent-lax3-2.xx.fbcdn.net/v/t1.6435-9/{id}_n.jpg",
    "https://scontent-sjc3-1.xx.fbcdn.net/v/t39.30808-6/{id}_n.jpg",
    "https://scontent-iad3-1.xx.fbcdn.net/v/t1.6435-9/{id}_n.jpg",
    # Other formats
    "https://scontent.xx.fbcdn.net/v/t39.30808-6/{id}_n.png",
    "https://scontent.xx.fbcdn.net/v/t1.6435-9/{id}_n.png",
    # Original size
    "https://scontent.xx.fbcdn.net/v/t39.30808-6/{id}_o.jpg",
    "https://scontent.xx.fbcdn.net/v/t1.6435-9/{id}_o.jpg",
)

_IMAGE_PATTERNS = (
    re.compile(r'src="(https://[^"]*\.(?:jpg|jpeg|png|webp)[^"]*)"[^>]*(?:width|height)', re.IGNORECASE),
    re.compile(r'data-src="(https://[^"]*\.(?:jpg|jpeg|png|webp)[^"]*)"', re.IGNORECASE),
    re.compile(r"background-image:\s*url\(['\"]?(https://[^'\"]*\.(?:jpg|jpeg|png|webp)[^'\"]*)", re.IGNORECASE),
    re.compile(r'"(https://scontent[^"]*\.(?:jpg|jpeg|png|webp)[^"]*)"', re.IGNORECASE),
    re.compile(r'"(https://[^"]*fbcdn[^"]*\.(?:jpg|jpeg|png|webp)[^"]*)"', re.IGNORECASE),
)

_SIZE_RE = re.compile(r"[?&](?:w|width|s)=(\d+)")


def photo_id(url: str) -> Optional[str]:
    """Numeric photo id from the known Facebook photo URL shapes."""
    match = _FBID_RE.search(url or "")
    if match:
        return match.group(1)
    for pattern in _ALT_ID_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    return None


def cdn_candidates(fbid: str) -> List[str]:
    return [template.format(id=fbid) for template in _CDN_TEMPLATES]


def _is_candidate(url: str) -> bool:
    is_cdn = "scontent" in url or "fbcdn" in url or "facebook" in url
    is_small = "_s." in url or "_t." in url or "_q." in url
    is_profile = "profile" in url or "avatar" in url
    return is_cdn and not is_small and not is_profile


def scrape_image_urls(html: str) -> List[str]:
    """Full-size CDN image URLs found in a photo page, in discovery order."""
    if not html:
        return []
    text = html.replace("\\/", "/")
    seen = []
    for pattern in _IMAGE_PATTERNS:
        for match in pattern.finditer(text):
            url = match.group(1).replace("&amp;", "&")
            if url not in seen:
                seen.append(url)
    return [u for u in seen if _is_candidate(u)]


def pick_best_image(urls: List[str]) -> Optional[str]:
    """Prefer the largest advertised width, or an 'orig' rendition."""
    best, max_size = None, 0
    for url in urls:
        match = _SIZE_RE.search(url)
        size = int(match.group(1)) if match else 0
        if best is None or size > max_size or "orig" in url:
            best, max_size = url, max(size, max_size)
    return best


def og_image(html: str) -> Optional[str]:
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.find("meta", attrs={"property": "og:image"})
    content = tag.get("content") if tag else None
    return content.replace("&amp;", "&").strip() if content else None
