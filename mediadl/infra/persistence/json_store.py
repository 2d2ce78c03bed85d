import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from mediadl.core.entities import Artifact, ArtifactStatus, Role
from mediadl.core.errors import ArtifactNotFound
from mediadl.core.repositories import ArtifactRepository
from mediadl.core.workspace import TempArea

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, payload) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=path.name + ".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.remove(tmp_name)
        except OSError:
            pass
        raise


def _load_json(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("could not load %s, starting empty: %s", path.name, e)
        return None
    if not isinstance(data, dict):
        logger.error("unexpected content in %s, starting empty", path.name)
        return None
    return data


class JsonArtifactRepository(ArtifactRepository):
    """
    Artifact history and per-identity settings kept in two JSON files
    inside the temp area.

    Both files are loaded once at construction and rewritten in full after
    every mutation. All access goes through one re-entrant lock, so a
    lookup-then-demote or record-then-truncate is never observed half done.
    """

    def __init__(self, temp_area: TempArea, max_history_per_identity: int = 100):
        self.temp_area = temp_area
        self.max_history = max_history_per_identity
        self._lock = threading.RLock()
        self._history: Dict[str, List[Artifact]] = {}
        self._storage_limits: Dict[str, int] = {}
        self._roles: Dict[str, Role] = {}
        self._load()

    # -- persistence -------------------------------------------------

    def _load(self):
        history = _load_json(self.temp_area.history_path) or {}
        for identity, records in history.items():
            if not isinstance(records, list):
                continue
            artifacts = []
            for data in records:
                try:
                    artifacts.append(Artifact.from_record(data))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("skipping malformed history record for %s: %s", identity, e)
            self._history[identity] = artifacts

        settings = _load_json(self.temp_area.settings_path) or {}
        for identity, limit in (settings.get("storageLimits") or {}).items():
            try:
                self._storage_limits[identity] = int(limit)
            except (TypeError, ValueError):
                logger.warning("ignoring invalid storage limit for %s: %r", identity, limit)
        for identity, role in (settings.get("userRoles") or {}).items():
            self._roles[identity] = Role.parse(role)

        logger.info("loaded download history for %d identities", len(self._history))

    def _save_history(self):
        payload = {
            identity: [a.to_record() for a in artifacts]
            for identity, artifacts in self._history.items()
        }
        _atomic_write_json(self.temp_area.history_path, payload)

    def _save_settings(self):
        payload = {
            "storageLimits": dict(self._storage_limits),
            "userRoles": {identity: role.value for identity, role in self._roles.items()},
        }
        _atomic_write_json(self.temp_area.settings_path, payload)

    def _file_exists(self, artifact: Artifact) -> bool:
        if not artifact.primary_file:
            return False
        return self.temp_area.exists(self.temp_area.path_for(artifact.primary_file.filename))

    # -- artifacts ---------------------------------------------------

    def lookup(self, url: str) -> Optional[Artifact]:
        with self._lock:
            dirty = False
            try:
                for artifacts in self._history.values():
                    for artifact in artifacts:
                        if artifact.source_url != url or not artifact.is_live:
                            continue
                        if self._file_exists(artifact):
                            artifact.touch()
                            dirty = True
                            return artifact
                        logger.info("backing file gone, demoting artifact=%s", artifact.id)
                        artifact.mark_deleted()
                        dirty = True
                return None
            finally:
                if dirty:
                    self._save_history()

    def record(self, artifact: Artifact) -> Artifact:
        with self._lock:
            artifacts = self._history.setdefault(artifact.owner_identity, [])
            artifacts.insert(0, artifact)
            if len(artifacts) > self.max_history:
                del artifacts[self.max_history:]
            self._save_history()
        logger.info("recorded artifact=%s identity=%s title=%r",
                    artifact.id, artifact.owner_identity, artifact.title)
        return artifact

    def _find(self, artifact_id: str, identity: str) -> Optional[Artifact]:
        for artifact in self._history.get(identity, []):
            if artifact.id == artifact_id:
                return artifact
        return None

    def get(self, artifact_id: str, identity: str) -> Optional[Artifact]:
        with self._lock:
            return self._find(artifact_id, identity)

    def delete(self, artifact_id: str, identity: str) -> Artifact:
        with self._lock:
            artifact = self._find(artifact_id, identity)
            if artifact is None:
                raise ArtifactNotFound(artifact_id)

            if artifact.primary_file:
                self.temp_area.remove(self.temp_area.path_for(artifact.primary_file.filename))
            for alt in artifact.alternate_files:
                self.temp_area.remove(self.temp_area.path_for(alt.stored_filename))

            artifact.mark_deleted()
            self._save_history()
        logger.info("deleted artifact=%s identity=%s", artifact_id, identity)
        return artifact

    def touch(self, artifact_id: str, identity: str) -> Optional[Artifact]:
        with self._lock:
            artifact = self._find(artifact_id, identity)
            if artifact is None:
                return None
            artifact.touch()
            self._save_history()
            return artifact

    def history(self, identity: str, limit: int = 50) -> List[Artifact]:
        with self._lock:
            valid = []
            dirty = False
            for artifact in self._history.get(identity, []):
                if not artifact.is_live:
                    continue
                if self._file_exists(artifact):
                    valid.append(artifact)
                else:
                    artifact.mark_deleted()
                    dirty = True
            if dirty:
                self._save_history()
            return valid[:limit]

    def all_records(self, identity: Optional[str] = None) -> List[Artifact]:
        with self._lock:
            if identity is not None:
                return list(self._history.get(identity, []))
            return [a for artifacts in self._history.values() for a in artifacts]

    def identities(self) -> List[str]:
        with self._lock:
            return list(self._history.keys())

    def mark_deleted_by_filename(self, filename: str) -> int:
        with self._lock:
            count = 0
            for artifacts in self._history.values():
                for artifact in artifacts:
                    if artifact.stored_filename == filename and artifact.status != ArtifactStatus.DELETED:
                        artifact.mark_deleted()
                        count += 1
            if count:
                self._save_history()
            return count

    def usage_bytes(self, identity: str) -> int:
        with self._lock:
            return sum(
                a.size_bytes for a in self._history.get(identity, [])
                if a.is_live and self._file_exists(a)
            )

    # -- settings ----------------------------------------------------

    def get_storage_limit(self, identity: str) -> Optional[int]:
        with self._lock:
            return self._storage_limits.get(identity)

    def set_storage_limit(self, identity: str, limit_bytes: int) -> None:
        with self._lock:
            self._storage_limits[identity] = int(limit_bytes)
            self._save_settings()
        logger.info("set storage limit identity=%s limit=%d", identity, limit_bytes)

    def get_role(self, identity: str) -> Role:
        with self._lock:
            return self._roles.get(identity, Role.USER)

    def set_role(self, identity: str, role: Role) -> None:
        with self._lock:
            self._roles[identity] = role
            self._save_settings()
        logger.info("set role identity=%s role=%s", identity, role.value)
