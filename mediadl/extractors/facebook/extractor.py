import logging
from pathlib import Path
from typing import Optional

from mediadl.core.entities import ArtifactKind
from mediadl.core.errors import MediaDLError, NoContentFound, UpstreamTimeout, UpstreamUnavailable
from mediadl.core.interfaces import NetworkAdapter
from mediadl.core.workspace import TempArea, file_extension
from mediadl.infra.network.http import DEFAULT_USER_AGENT, NetworkError
from mediadl.infra.process.ytdlp import YtDlpTool
from ..base import BaseExtractor
from ..instructions import facebook_photo_instructions
from ..quality import HIGHEST_ONLY
from ..result import ExtractionRequest, ExtractResult
from ..tool import YtDlpVideoExtractor
from . import photos

logger = logging.getLogger(__name__)

FACEBOOK_REFERER = "https://www.facebook.com/"
EXTERNAL_HIT_UA = "facebookexternalhit/1.1 (+http://www.facebook.com/externalhit_uatext.php)"
SHORT_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

_PAGE_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Upgrade-Insecure-Requests": "1",
}

# Header sets tried in turn when fetching a scraped image
_IMAGE_HEADER_SETS = (
    {
        "User-Agent": DEFAULT_USER_AGENT,
        "Referer": FACEBOOK_REFERER,
        "Accept": "image/webp,image/apng,image/*,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
    },
    {
        "User-Agent": ("Mozilla/5.0 (iPhone; CPU iPhone OS 14_7_1 like Mac OS X) AppleWebKit/605.1.15 "
                       "(KHTML, like Gecko) Version/14.1.2 Mobile/15E148 Safari/604.1"),
        "Referer": "https://m.facebook.com/",
        "Accept": "image/*,*/*;q=0.8",
    },
    {
        "User-Agent": SHORT_UA,
        "Accept": "image/*,*/*;q=0.8",
    },
)


# -- video -------------------------------------------------------------

class FacebookVideoExtractor(YtDlpVideoExtractor):
    """Facebook video via yt-dlp, letting it pick the format."""
    name = "facebook-ytdlp"
    title_fallback = "Facebook Video"
    quality_in_filename = True
    extra_args = ["--ignore-errors"]

    def format_for(self, quality: str) -> Optional[str]:
        return None


class FacebookUserAgentVideoExtractor(FacebookVideoExtractor):
    name = "facebook-ytdlp-ua"
    extra_args = ["--user-agent", SHORT_UA]


class FacebookApiVersionVideoExtractor(FacebookVideoExtractor):
    name = "facebook-ytdlp-api-v2.9"
    extra_args = ["--extractor-args", "facebook:api_version=v2.9"]


# -- photo -------------------------------------------------------------

class FacebookPhotoExtractor(BaseExtractor):
    """Shared result shape for the photo strategies."""
    watermark_free = True

    def _photo_result(self, path: Path) -> ExtractResult:
        primary = self._media_file(path)
        ext = file_extension(primary.filename, "jpg")
        return ExtractResult(
            kind=ArtifactKind.IMAGE,
            title="Facebook Photo",
            primary=primary,
            filename=f"Facebook_Photo.{ext}",
            resolved_quality="Original",
            watermark_free=True,
            available_qualities=list(HIGHEST_ONLY),
            size_bytes=self.temp_area.size_of(path),
        )

    def _download_image(self, network: NetworkAdapter, url: str, headers: dict,
                        timeout: Optional[float] = None) -> Path:
        ext = file_extension(url.split("?", 1)[0], "jpg")
        if ext not in ("jpg", "jpeg", "png", "webp"):
            ext = "jpg"
        output = self.temp_area.new_path(ext)
        try:
            network.download_to(url, output, headers=headers, timeout=timeout)
        except (NetworkError, UpstreamTimeout):
            self._discard(output)
            raise
        return output


class FacebookCdnPhotoExtractor(FacebookPhotoExtractor):
    """Guess the image URL on Facebook's CDN from the numeric photo id."""
    name = "facebook-photo-cdn"

    def __init__(self, temp_area: TempArea, network: NetworkAdapter, timeout: float = 10.0):
        super().__init__(temp_area)
        self.network = network
        self.timeout = timeout

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        fbid = photos.photo_id(request.url)
        if not fbid:
            raise NoContentFound(self.name, "no photo id in URL")

        headers = {"User-Agent": SHORT_UA, "Referer": FACEBOOK_REFERER}
        for candidate in photos.cdn_candidates(fbid):
            try:
                path = self._download_image(self.network, candidate, headers, self.timeout)
            except (NetworkError, UpstreamTimeout) as e:
                logger.debug("%s: %s failed: %s", self.name, candidate, e)
                continue
            return self._photo_result(path)
        raise NoContentFound(self.name, "no CDN template matched")


class FacebookPageScrapeExtractor(FacebookPhotoExtractor):
    """Fetch the photo page and download the largest CDN image it references."""
    name = "facebook-photo-scrape"

    def __init__(self, temp_area: TempArea, network: NetworkAdapter, timeout: float = 15.0,
                 download_timeout: float = 30.0):
        super().__init__(temp_area)
        self.network = network
        self.timeout = timeout
        self.download_timeout = download_timeout

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        try:
            page = self.network.get(request.url, headers=_PAGE_HEADERS, timeout=self.timeout)
        except NetworkError as e:
            raise UpstreamUnavailable("facebook", "REQUEST_FAILED", str(e))

        best = photos.pick_best_image(photos.scrape_image_urls(page.text))
        if not best:
            raise NoContentFound(self.name, "no suitable image URLs in page")

        last_error = None
        for headers in _IMAGE_HEADER_SETS:
            try:
                path = self._download_image(self.network, best, headers, self.download_timeout)
            except (NetworkError, UpstreamTimeout) as e:
                last_error = e
                continue
            return self._photo_result(path)
        raise UpstreamUnavailable("facebook cdn", "DOWNLOAD_FAILED", str(last_error))


class FacebookThumbnailExtractor(FacebookPhotoExtractor):
    """Let yt-dlp write the post's thumbnail image."""
    name = "facebook-photo-ytdlp"

    def __init__(self, temp_area: TempArea, ytdlp: YtDlpTool):
        super().__init__(temp_area)
        self.ytdlp = ytdlp

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        output_base = self.temp_area.new_path("jpg").with_suffix("")
        try:
            written = self.ytdlp.write_thumbnail(request.url, output_base)
        except UpstreamTimeout:
            raise
        except MediaDLError as e:
            raise NoContentFound(self.name, f"yt-dlp could not fetch a thumbnail: {e}")
        if written is None:
            raise NoContentFound(self.name, "no thumbnail found")
        return self._photo_result(written)


class FacebookOgImageExtractor(FacebookPhotoExtractor):
    """Ask for the page as Facebook's link-preview crawler and follow og:image."""
    name = "facebook-photo-og-image"

    def __init__(self, temp_area: TempArea, network: NetworkAdapter, timeout: float = 15.0,
                 download_timeout: float = 30.0):
        super().__init__(temp_area)
        self.network = network
        self.timeout = timeout
        self.download_timeout = download_timeout

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        headers = {
            "User-Agent": EXTERNAL_HIT_UA,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        try:
            page = self.network.get(request.url, headers=headers, timeout=self.timeout)
        except NetworkError as e:
            raise UpstreamUnavailable("facebook", "REQUEST_FAILED", str(e))

        image_url = photos.og_image(page.text)
        if not image_url:
            raise NoContentFound(self.name, "no og:image found")

        try:
            path = self._download_image(
                self.network, image_url,
                {"User-Agent": SHORT_UA, "Accept": "image/*,*/*;q=0.8"},
                self.download_timeout,
            )
        except NetworkError as e:
            raise UpstreamUnavailable("facebook cdn", "DOWNLOAD_FAILED", str(e))
        return self._photo_result(path)


class FacebookPhotoInstructionsExtractor(BaseExtractor):
    """Last resort: tell the user how to save the photo by hand."""
    name = "facebook-photo-instructions"

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        return facebook_photo_instructions(request.url)
