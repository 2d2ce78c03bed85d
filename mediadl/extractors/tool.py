import logging
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from mediadl.core.entities import AlternateFile, AlternatePurpose, ArtifactKind
from mediadl.core.errors import MediaDLError, NoContentFound, ProcessFailed, UpstreamTimeout
from mediadl.core.workspace import TempArea
from mediadl.infra.process.ytdlp import YtDlpTool
from .base import BaseExtractor, safe_title
from .quality import available_qualities, format_heights, resolve_format, select_quality, BEST_AVAILABLE
from .result import ExtractionRequest, ExtractResult

logger = logging.getLogger(__name__)

AUDIO_BITRATES = ("128", "320")


class YtDlpVideoExtractor(BaseExtractor):
    """
    Download a video with yt-dlp into the temp area.

    Flow: optional metadata probe, then the negotiated format followed by
    each entry of `retry_formats` until one yields a non-empty file, then
    optional mp3 alternates. A timeout anywhere ends the attempt.
    """
    name = "yt-dlp"
    watermark_free = True
    title_fallback = "Video"

    probe_required = False
    # Format expressions tried after the negotiated one; None means no -f at all
    retry_formats: Sequence[Optional[str]] = ()
    quality_in_filename = False
    offers_audio_alternates = True
    extra_args: List[str] = []

    def __init__(self, temp_area: TempArea, ytdlp: YtDlpTool, audio_alternates: bool = True):
        super().__init__(temp_area)
        self.ytdlp = ytdlp
        self.audio_alternates = audio_alternates

    def format_for(self, quality: str) -> Optional[str]:
        return resolve_format(quality)

    def _probe(self, url: str) -> Dict:
        info_base = self.temp_area.root / uuid.uuid4().hex
        try:
            return self.ytdlp.probe(url, info_base, self.extra_args)
        except UpstreamTimeout:
            raise
        except (MediaDLError, ValueError) as e:
            if self.probe_required:
                raise NoContentFound(self.name, f"could not read video info: {e}")
            logger.info("%s: metadata probe failed, continuing without it: %s", self.name, e)
            return {}

    def _download(self, url: str, output: Path, quality: str) -> Optional[str]:
        """Returns the format expression that produced the file."""
        formats = [self.format_for(quality)] + list(self.retry_formats)
        last_error: Optional[Exception] = None
        for format_expr in formats:
            try:
                self.ytdlp.download(url, output, format_expr, self.extra_args)
                self._media_file(output)
                return format_expr
            except (ProcessFailed, NoContentFound) as e:
                last_error = e
                self._discard(output)
                logger.info("%s: format %r failed: %s", self.name, format_expr, e)
            except UpstreamTimeout:
                self._discard(output)
                raise
        raise NoContentFound(self.name, f"all formats failed: {last_error}")

    def _resolved_quality(self, quality: str, used_format: Optional[str], info: Dict) -> str:
        if used_format == self.format_for(quality):
            return select_quality(quality, format_heights(info.get("formats")))
        if used_format == "18":
            return "360p"
        return BEST_AVAILABLE

    def _audio_alternates(self, url: str, stem: str) -> List[AlternateFile]:
        alternates = []
        for bitrate in AUDIO_BITRATES:
            output_base = self.temp_area.root / uuid.uuid4().hex
            produced = Path(f"{output_base}.mp3")
            try:
                produced = self.ytdlp.extract_audio(url, output_base, bitrate)
                self._media_file(produced)
            except (MediaDLError, OSError) as e:
                self._discard(produced)
                logger.info("%s: audio extraction failed for %s kbps: %s", self.name, bitrate, e)
                continue
            alternates.append(AlternateFile(
                label=f"Audio Only ({bitrate} Kbps)",
                path=str(produced),
                purpose=AlternatePurpose.AUDIO_BITRATE,
                filename=f"{stem}_audio_{bitrate}kbps.mp3",
            ))
        return alternates

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        info = self._probe(request.url)
        output = self.temp_area.new_path("mp4")
        used_format = self._download(request.url, output, request.quality)
        primary = self._media_file(output)

        title = info.get("title") or self.title_fallback
        stem = safe_title(info.get("title"), self.title_fallback.replace(" ", "_"))
        resolved = self._resolved_quality(request.quality, used_format, info)

        alternates = []
        if self.audio_alternates and self.offers_audio_alternates:
            alternates = self._audio_alternates(request.url, stem)

        if self.quality_in_filename:
            filename = f"{stem}_{resolved.replace(' ', '_')}.mp4"
        else:
            filename = f"{stem}.mp4"

        duration = info.get("duration")
        return ExtractResult(
            kind=ArtifactKind.VIDEO,
            title=title,
            primary=primary,
            alternates=alternates,
            filename=filename,
            resolved_quality=resolved,
            watermark_free=self.watermark_free,
            available_qualities=available_qualities(info.get("formats")),
            thumbnail=info.get("thumbnail"),
            duration=float(duration) if isinstance(duration, (int, float)) else None,
            size_bytes=self.temp_area.size_of(output),
        )
