from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mediadl.core.entities import AlternateFile, ArtifactKind, ExtractionAttempt, MediaFile, Platform


@dataclass
class ExtractionRequest:
    url: str
    platform: Platform = Platform.UNKNOWN
    quality: str = "default"
    password: Optional[str] = None
    target_email: Optional[str] = None
    # Attempts made so far in the current chain run
    attempts: List[ExtractionAttempt] = field(default_factory=list)


@dataclass
class ExtractResult:
    """
    Unified result contract for all extraction strategies.

    A result either names a file produced inside the temp area
    (`primary`), a remote link the caller can fetch itself
    (`download_ref`), or, for degraded outcomes, human instructions.
    """
    kind: ArtifactKind
    title: str = ""
    primary: Optional[MediaFile] = None
    alternates: List[AlternateFile] = field(default_factory=list)
    filename: Optional[str] = None  # Human filename offered to the client
    resolved_quality: str = "Unknown"
    watermark_free: bool = False
    available_qualities: List[str] = field(default_factory=list)
    thumbnail: Optional[str] = None
    duration: Optional[float] = None
    size_bytes: int = 0
    download_ref: Optional[str] = None
    instructions: Optional[str] = None
    processing_reason: Optional[str] = None
    strategy: str = ""  # Filled in by the chain
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_degraded(self) -> bool:
        return self.kind == ArtifactKind.INSTRUCTIONS

    @property
    def is_local(self) -> bool:
        return self.primary is not None

    def produced_paths(self) -> List[str]:
        paths = [self.primary.path] if self.primary else []
        paths.extend(alt.path for alt in self.alternates)
        return paths
