"""
Response parsers for the TikTok download services.

Every parser takes the raw response body and returns a TikTokMedia, or
None when the body carries no usable media link. Parsers never raise on
unexpected shapes.
"""
import json
import re
from typing import Any, Optional

from bs4 import BeautifulSoup

from .models import TikTokMedia

TIKWM_BASE = "https://www.tikwm.com"

_SNAPTIK_PATTERNS = (
    re.compile(r'href="([^"]*)" download[^>]*>.*?Download.*?MP4', re.IGNORECASE | re.DOTALL),
    re.compile(r'href="([^"]*\.mp4[^"]*)"', re.IGNORECASE),
    re.compile(r'<a[^>]*href="([^"]*)"[^>]*class="[^"]*download[^"]*"', re.IGNORECASE),
    re.compile(r'url:\s*["\']([^"\']*\.mp4[^"\']*)', re.IGNORECASE),
    re.compile(r'(https?://[^"\'\s]*\.mp4[^"\'\s]*)', re.IGNORECASE),
)


def _as_json(body: Any) -> Optional[dict]:
    if isinstance(body, dict):
        return body
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _absolute(url: str, base: str = "https:") -> str:
    url = url.strip().replace("&amp;", "&")
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("/") and base != "https:":
        return base + url
    return url


def _page_title(soup: BeautifulSoup, strip_suffix: str = "") -> str:
    tag = soup.find("title")
    title = tag.get_text(strip=True) if tag else ""
    title = re.sub(r"Download\s*", "", title, flags=re.IGNORECASE)
    if strip_suffix:
        title = re.sub(rf"\s*-\s*{strip_suffix}", "", title, flags=re.IGNORECASE)
    return title.strip() or "TikTok Video"


def parse_snaptik(html: str) -> Optional[TikTokMedia]:
    if not html or not isinstance(html, str):
        return None
    soup = BeautifulSoup(html, "html.parser")

    url = None
    for anchor in soup.find_all("a", href=True):
        classes = " ".join(anchor.get("class") or [])
        if anchor.has_attr("download") or "download" in classes:
            href = anchor["href"]
            if href and not href.startswith("#") and not href.startswith("javascript"):
                url = href
                break

    if not url:
        for pattern in _SNAPTIK_PATTERNS:
            match = pattern.search(html)
            if match:
                url = match.group(1)
                break

    if not url:
        return None
    return TikTokMedia(url=_absolute(url), title=_page_title(soup, "SnapTik"), watermark_free=True)


def parse_ssstik(html: str) -> Optional[TikTokMedia]:
    if not html or not isinstance(html, str):
        return None
    soup = BeautifulSoup(html, "html.parser")

    url = None
    anchors = soup.find_all("a", href=True)
    for anchor in anchors:
        text = anchor.get_text(" ", strip=True).lower()
        if anchor.has_attr("download") and "without watermark" in text:
            url = anchor["href"]
            break
    if not url:
        for anchor in anchors:
            text = anchor.get_text(" ", strip=True).lower()
            if "download" in text and "mp4" in text:
                url = anchor["href"]
                break

    if not url:
        return None
    return TikTokMedia(url=_absolute(url), title=_page_title(soup), watermark_free=True)


def parse_tikdd(body: Any) -> Optional[TikTokMedia]:
    data = _as_json(body)
    if not data:
        return None
    medias = data.get("medias") or []
    if not medias or not isinstance(medias[0], dict) or not medias[0].get("url"):
        return None
    return TikTokMedia(
        url=medias[0]["url"],
        title=data.get("title") or "TikTok Video",
        thumbnail=data.get("thumbnail") or "",
        watermark_free=True,
    )


def parse_tiktok_scraper(body: Any) -> Optional[TikTokMedia]:
    data = _as_json(body)
    inner = (data or {}).get("data")
    if not isinstance(inner, dict) or not inner.get("play"):
        return None
    return TikTokMedia(
        url=inner["play"],
        title=inner.get("title") or "TikTok Video",
        thumbnail=inner.get("cover") or "",
        watermark_free=True,
        quality="HD",
        music=inner.get("music") or None,
    )


def parse_tikwm(body: Any) -> Optional[TikTokMedia]:
    """
    TikWM answers `code == 0` on success. Its `wmplay` link is the
    watermark-free one; without it the result may carry a watermark.
    """
    data = _as_json(body)
    if not data or data.get("code") != 0:
        return None
    inner = data.get("data")
    if not isinstance(inner, dict):
        return None

    url = inner.get("wmplay") or inner.get("hdplay") or inner.get("play")
    if not url:
        return None
    play = inner.get("play")
    music = inner.get("music")
    return TikTokMedia(
        url=_absolute(url, TIKWM_BASE),
        title=inner.get("title") or "TikTok Video",
        thumbnail=_absolute(inner["cover"], TIKWM_BASE) if inner.get("cover") else "",
        watermark_free=bool(inner.get("wmplay")),
        quality="HD" if inner.get("hdplay") else "SD",
        sd_url=_absolute(play, TIKWM_BASE) if play else None,
        music=_absolute(music, TIKWM_BASE) if music else None,
    )
