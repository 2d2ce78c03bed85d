import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from mediadl.core.entities import UNLIMITED, IdentityQuotaRecord, Role
from mediadl.core.repositories import ArtifactRepository
from mediadl.core.workspace import TempArea

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_LIMIT = 2 * 1024 * 1024 * 1024


@dataclass
class Admission:
    allowed: bool
    reason: str = ""
    limit: int = 0
    usage: int = 0


class QuotaManager:
    """
    Per-identity storage caps over the artifact store.

    Usage is recomputed from the store on every call. Setters are trusted:
    authorization is the caller's business.
    """

    def __init__(self, repository: ArtifactRepository, default_limit: int = DEFAULT_STORAGE_LIMIT,
                 temp_area: Optional[TempArea] = None):
        self.repository = repository
        self.default_limit = default_limit
        self.temp_area = temp_area
        self._locks_guard = threading.Lock()
        self._identity_locks: Dict[str, threading.Lock] = {}

    def lock_for(self, identity: str) -> threading.Lock:
        """Hold across admit and record so admissions for one identity see each other."""
        with self._locks_guard:
            lock = self._identity_locks.get(identity)
            if lock is None:
                lock = self._identity_locks[identity] = threading.Lock()
            return lock

    def limit_for(self, identity: str) -> int:
        if self.repository.get_role(identity).is_privileged:
            return UNLIMITED
        explicit = self.repository.get_storage_limit(identity)
        return explicit if explicit is not None else self.default_limit

    def record_for(self, identity: str) -> IdentityQuotaRecord:
        return IdentityQuotaRecord(
            identity=identity,
            role=self.repository.get_role(identity),
            storage_limit_bytes=self.limit_for(identity),
            current_usage_bytes=self.repository.usage_bytes(identity),
        )

    def admit(self, identity: str, candidate_bytes: int) -> Admission:
        limit = self.limit_for(identity)
        if limit == UNLIMITED:
            return Admission(True, limit=limit)

        usage = self.repository.usage_bytes(identity)
        if usage + candidate_bytes > limit:
            reason = (f"Storage limit exceeded: {usage / 1024 ** 2:.1f}MB used, "
                      f"{candidate_bytes / 1024 ** 2:.1f}MB requested, limit {limit / 1024 ** 2:.1f}MB")
            logger.info("admission denied identity=%s usage=%d candidate=%d limit=%d",
                        identity, usage, candidate_bytes, limit)
            return Admission(False, reason=reason, limit=limit, usage=usage)
        return Admission(True, limit=limit, usage=usage)

    def set_role(self, identity: str, role) -> Role:
        role = role if isinstance(role, Role) else Role.parse(role)
        self.repository.set_role(identity, role)
        return role

    def set_storage_limit(self, identity: str, limit_bytes: int):
        limit_bytes = int(limit_bytes)
        if limit_bytes < 0 and limit_bytes != UNLIMITED:
            raise ValueError(f"storage limit must be >= 0 or {UNLIMITED}, got {limit_bytes}")
        self.repository.set_storage_limit(identity, limit_bytes)

    def storage_stats(self, identity: str) -> dict:
        records = self.repository.all_records(identity)
        live = self.repository.history(identity, limit=len(records) or 1)
        total_size = sum(a.size_bytes for a in live)
        limit = self.limit_for(identity)
        return {
            "totalSize": total_size,
            "fileCount": len(live),
            "totalDownloads": len(records),
            "activeDownloads": len(live),
            "maxStorageSize": limit,
            "usagePercentage": 0 if limit in (UNLIMITED, 0) else total_size / limit * 100,
            "role": self.repository.get_role(identity).value,
            "isUnlimited": limit == UNLIMITED,
        }

    def global_stats(self) -> dict:
        total_size = 0
        file_count = 0
        if self.temp_area is not None:
            for path in self.temp_area.files():
                if path.suffix == ".json":
                    continue
                total_size += self.temp_area.size_of(path)
                file_count += 1

        identities = self.repository.identities()
        total_downloads = 0
        active_downloads = 0
        for identity in identities:
            records = self.repository.all_records(identity)
            total_downloads += len(records)
            active_downloads += len(self.repository.history(identity, limit=len(records) or 1))

        return {
            "totalSize": total_size,
            "fileCount": file_count,
            "totalDownloads": total_downloads,
            "activeDownloads": active_downloads,
            "totalUsers": len(identities),
            "maxStorageSize": UNLIMITED,
            "usagePercentage": 0,
            "role": Role.ADMIN.value,
            "isUnlimited": True,
        }

    def users_overview(self) -> list:
        """One row per known identity, most recently active first."""
        rows = []
        for identity in self.repository.identities():
            stats = self.storage_stats(identity)
            records = self.repository.all_records(identity)
            last_activity = records[0].last_accessed_at if records else None
            rows.append({
                "identity": identity,
                "role": stats["role"],
                "storageLimit": stats["maxStorageSize"],
                "storageLimitFormatted": format_bytes(stats["maxStorageSize"]),
                "currentUsage": stats["totalSize"],
                "currentUsageFormatted": format_bytes(stats["totalSize"]),
                "usagePercentage": stats["usagePercentage"],
                "totalDownloads": stats["totalDownloads"],
                "activeDownloads": stats["activeDownloads"],
                "lastActivity": last_activity.isoformat() if last_activity else None,
            })
        rows.sort(key=lambda r: r["lastActivity"] or "", reverse=True)
        return rows


def format_bytes(size: int) -> str:
    if size == UNLIMITED:
        return "Unlimited"
    if size <= 0:
        return "0 Bytes"
    if size < 1024:
        return f"{size} Bytes"
    value = size / 1024
    for unit in ("KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"
