from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from datetime import datetime, timedelta
import uuid


class Platform(str, Enum):
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    FSHARE = "fshare"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return {
            Platform.YOUTUBE: "YouTube",
            Platform.TIKTOK: "TikTok",
            Platform.INSTAGRAM: "Instagram",
            Platform.FACEBOOK: "Facebook",
            Platform.TWITTER: "Twitter",
            Platform.FSHARE: "Fshare",
        }.get(self, "Unknown")


class ArtifactKind(str, Enum):
    VIDEO = "Video"
    AUDIO = "Audio"
    IMAGE = "Image"
    FILE = "File"
    INSTRUCTIONS = "Instructions"


class ArtifactStatus(str, Enum):
    COMPLETED = "completed"
    PROCESSING = "processing"
    DELETED = "deleted"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    UPSTREAM_ERROR = "upstream_error"
    NO_CONTENT = "no_content"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def is_privileged(self) -> bool:
        return self in (Role.ADMIN, Role.SUPER_ADMIN)

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.USER


class AlternatePurpose(str, Enum):
    AUDIO_BITRATE = "audio-bitrate"
    ALT_ITEM = "alt-item"


UNLIMITED = -1


@dataclass
class MediaFile:
    """A file produced inside the managed temp area."""
    path: str
    mime_type: str = "application/octet-stream"

    @property
    def filename(self) -> str:
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]


@dataclass
class AlternateFile:
    label: str
    path: str
    purpose: AlternatePurpose = AlternatePurpose.AUDIO_BITRATE
    filename: Optional[str] = None  # Human filename offered to the client

    @property
    def stored_filename(self) -> str:
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]

    def to_record(self) -> dict:
        return {
            "label": self.label,
            "path": self.path,
            "purpose": self.purpose.value,
            "filename": self.filename,
        }

    @classmethod
    def from_record(cls, data: dict) -> "AlternateFile":
        try:
            purpose = AlternatePurpose(data.get("purpose") or AlternatePurpose.AUDIO_BITRATE.value)
        except ValueError:
            purpose = AlternatePurpose.ALT_ITEM
        return cls(
            label=data.get("label", ""),
            path=data.get("path", ""),
            purpose=purpose,
            filename=data.get("filename"),
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


@dataclass
class Artifact:
    """A produced, locally stored media result tied to a source URL."""
    source_url: str
    platform: Platform
    kind: ArtifactKind
    owner_identity: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    title: str = ""
    primary_file: Optional[MediaFile] = None
    alternate_files: List[AlternateFile] = field(default_factory=list)
    requested_quality: str = "default"
    resolved_quality: str = "Unknown"
    watermark_free: bool = False
    size_bytes: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    last_accessed_at: datetime = field(default_factory=datetime.now)
    expires_at: Optional[datetime] = None
    status: ArtifactStatus = ArtifactStatus.COMPLETED

    # Display metadata
    filename: Optional[str] = None
    thumbnail: Optional[str] = None
    duration: Optional[float] = None
    available_qualities: List[str] = field(default_factory=list)
    user_agent: str = ""

    def __post_init__(self):
        if self.expires_at is None:
            self.expires_at = self.created_at + timedelta(days=7)

    @property
    def stored_filename(self) -> Optional[str]:
        return self.primary_file.filename if self.primary_file else None

    @property
    def is_live(self) -> bool:
        return self.status == ArtifactStatus.COMPLETED

    def touch(self) -> None:
        self.last_accessed_at = datetime.now()

    def mark_deleted(self) -> None:
        self.status = ArtifactStatus.DELETED

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "sourceUrl": self.source_url,
            "platform": self.platform.value,
            "kind": self.kind.value,
            "title": self.title,
            "primaryFile": (
                {"path": self.primary_file.path, "mimeType": self.primary_file.mime_type}
                if self.primary_file else None
            ),
            "alternateFiles": [alt.to_record() for alt in self.alternate_files],
            "requestedQuality": self.requested_quality,
            "resolvedQuality": self.resolved_quality,
            "watermarkFree": self.watermark_free,
            "sizeBytes": self.size_bytes,
            "createdAt": _iso(self.created_at),
            "lastAccessedAt": _iso(self.last_accessed_at),
            "expiresAt": _iso(self.expires_at),
            "ownerIdentity": self.owner_identity,
            "status": self.status.value,
            "filename": self.filename,
            "thumbnail": self.thumbnail,
            "duration": self.duration,
            "availableQualities": list(self.available_qualities),
            "userAgent": self.user_agent,
        }

    @classmethod
    def from_record(cls, data: dict) -> "Artifact":
        primary = data.get("primaryFile")
        try:
            platform = Platform(data.get("platform", "unknown"))
        except ValueError:
            platform = Platform.UNKNOWN
        try:
            kind = ArtifactKind(data.get("kind", ArtifactKind.FILE.value))
        except ValueError:
            kind = ArtifactKind.FILE
        try:
            status = ArtifactStatus(data.get("status", ArtifactStatus.COMPLETED.value))
        except ValueError:
            status = ArtifactStatus.DELETED

        created_at = _parse_dt(data.get("createdAt")) or datetime.now()
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            source_url=data.get("sourceUrl", ""),
            platform=platform,
            kind=kind,
            owner_identity=data.get("ownerIdentity", "anonymous"),
            title=data.get("title") or "",
            primary_file=MediaFile(primary["path"], primary.get("mimeType") or "application/octet-stream") if primary else None,
            alternate_files=[AlternateFile.from_record(a) for a in data.get("alternateFiles") or []],
            requested_quality=data.get("requestedQuality") or "default",
            resolved_quality=data.get("resolvedQuality") or "Unknown",
            watermark_free=bool(data.get("watermarkFree", False)),
            size_bytes=int(data.get("sizeBytes") or 0),
            created_at=created_at,
            last_accessed_at=_parse_dt(data.get("lastAccessedAt")) or created_at,
            expires_at=_parse_dt(data.get("expiresAt")),
            status=status,
            filename=data.get("filename"),
            thumbnail=data.get("thumbnail"),
            duration=data.get("duration"),
            available_qualities=list(data.get("availableQualities") or []),
            user_agent=data.get("userAgent") or "",
        )


@dataclass
class ExtractionAttempt:
    """Outcome of one strategy in a chain run. Never persisted."""
    strategy: str
    elapsed: float
    outcome: AttemptOutcome
    message: str = ""
    reason: str = ""  # Upstream reason code, when the failure carried one

    def to_dict(self) -> dict:
        data = {
            "strategy": self.strategy,
            "elapsed": round(self.elapsed, 3),
            "outcome": self.outcome.value,
            "message": self.message,
        }
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class IdentityQuotaRecord:
    identity: str
    role: Role = Role.USER
    storage_limit_bytes: int = 0
    current_usage_bytes: int = 0  # Derived, recomputed on every read

    @property
    def is_unlimited(self) -> bool:
        return self.storage_limit_bytes == UNLIMITED


@dataclass
class RetentionPolicy:
    max_artifact_age: timedelta = timedelta(days=7)
    sweep_interval: timedelta = timedelta(hours=6)
    max_history_per_identity: int = 100
