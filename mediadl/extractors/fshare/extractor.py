import logging

from mediadl.core.entities import ArtifactKind
from mediadl.core.errors import UpstreamUnavailable
from mediadl.core.workspace import TempArea
from ..base import BaseExtractor
from ..instructions import (
    API_FAILED, PROCESSING_ERROR, SERVICE_NOT_CONFIGURED, fshare_display_title, fshare_instructions,
)
from ..result import ExtractionRequest, ExtractResult
from .client import FshareClient

logger = logging.getLogger(__name__)

_KNOWN_REASONS = {"SERVICE_NOT_CONFIGURED", "API_FAILED", "QUOTA_EXCEEDED", "LOGIN_FAILED", "PROCESSING_ERROR"}


def _size_text(size: int) -> str:
    return f"{size / (1024 * 1024):.2f} MB" if size else "Unknown"


class FshareExtractor(BaseExtractor):
    """
    Resolve an Fshare file page into a time-limited direct link.

    Nothing is downloaded locally: the result carries the remote link as
    its download_ref.
    """
    name = "fshare-api"
    watermark_free = True

    def __init__(self, temp_area: TempArea, client: FshareClient):
        super().__init__(temp_area)
        self.client = client

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        if not self.client.is_configured:
            raise UpstreamUnavailable("fshare", SERVICE_NOT_CONFIGURED, "service is not configured")

        try:
            info = self.client.file_info(request.url)
            self.client.check_quota(info.size)
            link = self.client.download_link(request.url, request.password)
        except UpstreamUnavailable:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamUnavailable("fshare", PROCESSING_ERROR, str(e))

        size = link.size or info.size
        self.client.record_usage(size)
        filename = link.filename or info.name
        logger.info("fshare link issued file=%r size=%d", filename, size)

        return ExtractResult(
            kind=ArtifactKind.FILE,
            title=filename or fshare_display_title(request.url),
            filename=filename,
            download_ref=link.url,
            resolved_quality="Original",
            watermark_free=True,
            size_bytes=size,
            instructions=(
                "The Fshare file is ready for direct download.\n\n"
                f"File name: {filename}\n"
                f"Size: {_size_text(size)}\n"
                "The link is valid for a limited time."
            ),
            extras={"isDirect": True, "expiresIn": "1 hour", "targetEmail": request.target_email},
        )


class FshareInstructionsExtractor(BaseExtractor):
    """Manual-processing guidance, labelled with why the API path failed."""
    name = "fshare-instructions"
    watermark_free = True

    def __init__(self, temp_area: TempArea, client: FshareClient):
        super().__init__(temp_area)
        self.client = client

    def _reason(self, request: ExtractionRequest):
        if not self.client.is_configured:
            return SERVICE_NOT_CONFIGURED, ""
        for attempt in reversed(request.attempts):
            if attempt.reason in _KNOWN_REASONS:
                return attempt.reason, attempt.message
        return API_FAILED, ""

    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        reason, detail = self._reason(request)
        return fshare_instructions(
            request.url, reason,
            password=request.password,
            target_email=request.target_email,
            detail=detail,
        )
