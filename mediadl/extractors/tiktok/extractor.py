import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from mediadl.core.entities import AlternateFile, AlternatePurpose, ArtifactKind
from mediadl.core.errors import NoContentFound, UpstreamTimeout, UpstreamUnavailable
from mediadl.core.interfaces import NetworkAdapter
from mediadl.core.workspace import TempArea
from mediadl.infra.network.http import DEFAULT_USER_AGENT, NetworkError
from ..base import BaseExtractor, safe_title
from ..quality import DEFAULT_FORMAT, HIGHEST_ONLY, parse_quality
from ..result import ExtractionRequest, ExtractResult
from ..tool import YtDlpVideoExtractor
from . import parsers
from .models import TikTokMedia

logger = logging.getLogger(__name__)

TIKTOK_REFERER = "https://www.tiktok.com/"
_FORM = "application/x-www-form-urlencoded"
_HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"

# Requests below this height take the service's standard-definition link
SD_QUALITIES = ("360p", "240p")


class TikTokToolExtractor(YtDlpVideoExtractor):
    """TikTok through yt-dlp with browser-like headers. Output carries no watermark."""
    name = "tiktok-ytdlp"
    title_fallback = "TikTok Video"
    quality_in_filename = True
    offers_audio_alternates = False
    extra_args = [
        "--no-warnings",
        "--user-agent", "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        "--referer", TIKTOK_REFERER,
        "--add-header", "Accept-Language:en-US,en;q=0.9",
    ]

    def format_for(self, quality: str) -> Optional[str]:
        request = parse_quality(quality)
        if request.kind != "height":
            return DEFAULT_FORMAT
        h = request.height
        return "/".join([
            f"bestvideo[height={h}][ext=mp4]+bestaudio[ext=m4a]",
            f"bestvideo[height<={h}]+bestaudio",
            f"best[height={h}][ext=mp4]",
            f"best[height<={h}]",
            "best[ext=mp4]",
            "best",
        ])

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        result = super().attempt(request)
        result.title = f"{result.title} ({result.resolved_quality})"
        return result


@dataclass
class TikTokService:
    """One third-party TikTok download service and how to talk to it."""
    name: str
    url: str
    method: str
    parser: Callable[[str], Optional[TikTokMedia]]
    headers: Dict[str, str] = field(default_factory=dict)
    form: Optional[Callable[[str], Dict[str, str]]] = None
    params: Optional[Callable[[str], Dict[str, str]]] = None
    needs_api_key: bool = False


def default_services():
    return [
        TikTokService(
            name="snaptik",
            url="https://snaptik.app/abc2.php",
            method="POST",
            parser=parsers.parse_snaptik,
            headers={
                "Content-Type": _FORM,
                "User-Agent": DEFAULT_USER_AGENT,
                "Referer": "https://snaptik.app/",
                "Origin": "https://snaptik.app",
                "Accept": _HTML_ACCEPT,
                "Accept-Language": "en-US,en;q=0.5",
            },
            form=lambda url: {"url": url, "lang": "en"},
        ),
        TikTokService(
            name="snaptik-vn",
            url="https://vn.snaptik.com/abc2.php",
            method="POST",
            parser=parsers.parse_snaptik,
            headers={
                "Content-Type": _FORM,
                "User-Agent": DEFAULT_USER_AGENT,
                "Referer": "https://vn.snaptik.com/",
                "Origin": "https://vn.snaptik.com",
                "Accept": _HTML_ACCEPT,
                "Accept-Language": "vi-VN,vi;q=0.9,en;q=0.8",
            },
            form=lambda url: {"url": url, "lang": "vi"},
        ),
        TikTokService(
            name="ssstik",
            url="https://ssstik.io/abc",
            method="POST",
            parser=parsers.parse_ssstik,
            headers={"Content-Type": _FORM, "Referer": "https://ssstik.io/"},
            form=lambda url: {"id": url, "locale": "en", "tt": "Q2xhc3M="},
        ),
        TikTokService(
            name="tikdd",
            url="https://tikdd.cc/wp-json/aio-dl/video-data/",
            method="POST",
            parser=parsers.parse_tikdd,
            headers={"Content-Type": _FORM, "Referer": "https://tikdd.cc/"},
            form=lambda url: {"url": url},
        ),
        TikTokService(
            name="tiktok-scraper",
            url="https://tiktok-scraper7.p.rapidapi.com/",
            method="GET",
            parser=parsers.parse_tiktok_scraper,
            headers={"X-RapidAPI-Host": "tiktok-scraper7.p.rapidapi.com"},
            params=lambda url: {"url": url, "hd": "1"},
            needs_api_key=True,
        ),
        TikTokService(
            name="tikwm",
            url="https://www.tikwm.com/api/",
            method="GET",
            parser=parsers.parse_tikwm,
            params=lambda url: {"url": url},
        ),
    ]


class TikTokApiExtractor(BaseExtractor):
    """
    Fetch a TikTok video through one third-party download service.

    The service is asked for a direct media link, which is then streamed
    into the temp area. Whether the file is watermark-free depends on
    what the service reported.
    """

    def __init__(self, temp_area: TempArea, network: NetworkAdapter, service: TikTokService,
                 api_key: Optional[str] = None, timeout: float = 15.0):
        super().__init__(temp_area)
        self.network = network
        self.service = service
        self.api_key = api_key
        self.timeout = timeout
        self.name = f"tiktok-{service.name}" if not service.name.startswith("tiktok") else service.name

    def _query(self, url: str) -> TikTokMedia:
        service = self.service
        headers = dict(service.headers)
        if service.needs_api_key:
            if not self.api_key:
                raise UpstreamUnavailable(service.name, "SERVICE_NOT_CONFIGURED", "no RapidAPI key")
            headers["X-RapidAPI-Key"] = self.api_key

        try:
            response = self.network.request(
                service.method,
                service.url,
                params=service.params(url) if service.params else None,
                data=service.form(url) if service.form else None,
                headers=headers,
                timeout=self.timeout,
            )
        except NetworkError as e:
            raise UpstreamUnavailable(service.name, "REQUEST_FAILED", str(e))

        if not response.ok:
            raise UpstreamUnavailable(service.name, f"HTTP_{response.status_code}")

        media = service.parser(response.text)
        if media is None:
            raise NoContentFound(self.name, "no video URL found in response")
        return media

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        media = self._query(request.url)

        video_url, quality = media.url, media.quality
        if request.quality in SD_QUALITIES:
            video_url, quality = media.sd_url or media.url, "SD"

        output = self.temp_area.new_path("mp4")
        try:
            self.network.download_to(video_url, output, headers={"Referer": TIKTOK_REFERER})
        except NetworkError as e:
            self._discard(output)
            raise UpstreamUnavailable(self.service.name, "DOWNLOAD_FAILED", str(e))
        primary = self._media_file(output)

        stem = safe_title(media.title, "TikTok_Video")
        alternates = []
        if media.music:
            audio = self.temp_area.new_path("mp3")
            try:
                self.network.download_to(media.music, audio)
                self._media_file(audio)
                alternates.append(AlternateFile(
                    label="Audio Only",
                    path=str(audio),
                    purpose=AlternatePurpose.AUDIO_BITRATE,
                    filename=f"{stem}_audio.mp3",
                ))
            except (NetworkError, NoContentFound, UpstreamTimeout) as e:
                self._discard(audio)
                logger.info("%s: music track download failed: %s", self.name, e)

        return ExtractResult(
            kind=ArtifactKind.VIDEO,
            title=f"{media.title} ({quality})",
            primary=primary,
            alternates=alternates,
            filename=f"{stem}_{quality}.mp4",
            resolved_quality=quality,
            watermark_free=media.watermark_free,
            available_qualities=list(HIGHEST_ONLY),
            thumbnail=media.thumbnail or None,
            size_bytes=self.temp_area.size_of(output),
        )
