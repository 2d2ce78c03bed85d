import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from mediadl.core.entities import MediaFile
from mediadl.core.errors import NoContentFound
from mediadl.core.workspace import TempArea, guess_mime_type
from .result import ExtractionRequest, ExtractResult


def safe_title(title: Optional[str], fallback: str) -> str:
    """Title reduced to word characters with spaces collapsed to underscores."""
    stem = re.sub(r"[^\w\s]", "", title or "")
    stem = re.sub(r"\s+", "_", stem.strip())
    return stem[:120] or fallback


class BaseExtractor(ABC):
    """
    Abstract base class for all extraction strategies.

    A strategy is one way of turning a source URL into media. Strategies
    are arranged into per-platform chains and tried in order; a strategy
    either returns an ExtractResult or raises, and the chain moves on.

    BOUNDARIES:
    - A strategy writes only inside the temp area it was given.
    - A strategy removes its own partial files before raising.
    - A strategy never retries itself; the chain decides what runs next.
    """
    name = "base"
    watermark_free = False

    def __init__(self, temp_area: TempArea):
        self.temp_area = temp_area

    @abstractmethod
    def attempt(self, request: ExtractionRequest) -> ExtractResult:
        """
        Try to produce media for the request.

        Args:
            request: URL, requested quality and optional credentials.

        Returns:
            ExtractResult describing the produced file(s) or remote link.

        Raises:
            NoContentFound: The source answered but offered nothing usable.
            UpstreamTimeout: A bounded call ran out of time.
            MediaDLError / NetworkError: Any other upstream failure.
        """
        pass

    def _media_file(self, path: Path) -> MediaFile:
        """Verify a produced file is non-empty and describe it."""
        path = Path(path)
        if not path.is_file() or path.stat().st_size == 0:
            self._discard(path)
            raise NoContentFound(self.name, "downloaded file is missing or empty")
        return MediaFile(path=str(path), mime_type=guess_mime_type(path))

    @staticmethod
    def _discard(*paths):
        for path in paths:
            if not path:
                continue
            try:
                os.remove(path)
            except (FileNotFoundError, IsADirectoryError):
                pass
