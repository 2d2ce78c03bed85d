from abc import ABC, abstractmethod
from typing import List, Optional
from .entities import Artifact, Role


class ArtifactRepository(ABC):
    """
    Owns the identity -> history mapping and the URL index over it,
    plus the per-identity storage limits and roles.
    """

    @abstractmethod
    def lookup(self, url: str) -> Optional[Artifact]:
        pass

    @abstractmethod
    def record(self, artifact: Artifact) -> Artifact:
        pass

    @abstractmethod
    def get(self, artifact_id: str, identity: str) -> Optional[Artifact]:
        pass

    @abstractmethod
    def delete(self, artifact_id: str, identity: str) -> Artifact:
        pass

    @abstractmethod
    def touch(self, artifact_id: str, identity: str) -> Optional[Artifact]:
        pass

    @abstractmethod
    def history(self, identity: str, limit: int = 50) -> List[Artifact]:
        pass

    @abstractmethod
    def all_records(self, identity: Optional[str] = None) -> List[Artifact]:
        pass

    @abstractmethod
    def identities(self) -> List[str]:
        pass

    @abstractmethod
    def mark_deleted_by_filename(self, filename: str) -> int:
        pass

    @abstractmethod
    def usage_bytes(self, identity: str) -> int:
        pass

    @abstractmethod
    def get_storage_limit(self, identity: str) -> Optional[int]:
        pass

    @abstractmethod
    def set_storage_limit(self, identity: str, limit_bytes: int) -> None:
        pass

    @abstractmethod
    def get_role(self, identity: str) -> Role:
        pass

    @abstractmethod
    def set_role(self, identity: str, role: Role) -> None:
        pass
