import logging
from typing import List, Optional

from mediadl.core.entities import AlternateFile, AlternatePurpose, ArtifactKind
from mediadl.core.errors import NoContentFound, UpstreamUnavailable
from mediadl.core.interfaces import NetworkAdapter
from mediadl.core.workspace import TempArea, file_extension
from mediadl.infra.network.http import NetworkError
from ..base import BaseExtractor
from ..quality import HIGHEST_ONLY
from ..result import ExtractionRequest, ExtractResult
from ..tool import YtDlpVideoExtractor

logger = logging.getLogger(__name__)

RAPIDAPI_HOST = "instagram-downloader-download-instagram-videos-stories.p.rapidapi.com"
RAPIDAPI_URL = f"https://{RAPIDAPI_HOST}/index"


class InstagramToolExtractor(YtDlpVideoExtractor):
    name = "instagram-ytdlp"
    title_fallback = "Instagram Post"
    watermark_free = False
    # Last resort is yt-dlp's own pick
    retry_formats = (None,)


def _media_extension(url: str) -> str:
    path = url.split("?", 1)[0]
    ext = file_extension(path, "mp4")
    return ext if ext in ("mp4", "jpg", "jpeg", "png", "webp") else "mp4"


class InstagramApiExtractor(BaseExtractor):
    """
    Instagram through the RapidAPI downloader.

    The API answers with `media` as one URL or, for carousels, a list.
    The first item becomes the primary file and the rest alternates.
    """
    name = "instagram-rapidapi"

    def __init__(self, temp_area: TempArea, network: NetworkAdapter,
                 api_key: Optional[str] = None, timeout: float = 15.0):
        super().__init__(temp_area)
        self.network = network
        self.api_key = api_key
        self.timeout = timeout

    def _fetch(self, url: str):
        produced = self.temp_area.new_path(_media_extension(url))
        try:
            self.network.download_to(url, produced)
        except NetworkError as e:
            self._discard(produced)
            raise UpstreamUnavailable("instagram media", "DOWNLOAD_FAILED", str(e))
        return self._media_file(produced)

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        if not self.api_key:
            raise UpstreamUnavailable("RapidAPI Instagram", "SERVICE_NOT_CONFIGURED", "no RapidAPI key")

        try:
            response = self.network.get(
                RAPIDAPI_URL,
                params={"url": request.url},
                headers={"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": RAPIDAPI_HOST},
                timeout=self.timeout,
            )
        except NetworkError as e:
            raise UpstreamUnavailable("RapidAPI Instagram", "REQUEST_FAILED", str(e))
        if not response.ok:
            raise UpstreamUnavailable("RapidAPI Instagram", f"HTTP_{response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise NoContentFound(self.name, "response is not JSON")
        media = data.get("media") if isinstance(data, dict) else None
        items: List[str] = [m for m in media if isinstance(m, str)] if isinstance(media, list) else (
            [media] if isinstance(media, str) and media else [])
        if not items:
            raise NoContentFound(self.name, "no media in response")

        primary = self._fetch(items[0])
        alternates = []
        try:
            for index, item in enumerate(items[1:], start=2):
                alt = self._fetch(item)
                alternates.append(AlternateFile(
                    label=f"Item {index}",
                    path=alt.path,
                    purpose=AlternatePurpose.ALT_ITEM,
                    filename=f"Instagram_Item_{index}.{file_extension(alt.filename, 'mp4')}",
                ))
        except Exception:
            self._discard(primary.path, *[a.path for a in alternates])
            raise

        kind = ArtifactKind.IMAGE if primary.mime_type.startswith("image/") else ArtifactKind.VIDEO
        return ExtractResult(
            kind=kind,
            title="Instagram Post",
            primary=primary,
            alternates=alternates,
            filename=f"Instagram_Post.{file_extension(primary.filename, 'mp4')}",
            resolved_quality="Best Available",
            available_qualities=list(HIGHEST_ONLY),
            thumbnail=items[0],
            size_bytes=self.temp_area.size_of(primary.path),
        )
