import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from mediadl.core.entities import (
    AlternateFile, Artifact, ArtifactKind, ExtractionAttempt, Platform, RetentionPolicy,
)
from mediadl.core.errors import (
    ArtifactNotFound, ExtractionExhausted, MediaDLError, QuotaExceeded, UnsupportedPlatform,
)
from mediadl.core.repositories import ArtifactRepository
from mediadl.core.workspace import TempArea
from mediadl.extractors.registry import ExtractorRegistry
from mediadl.extractors.result import ExtractionRequest, ExtractResult
from mediadl.sources.detector import detect_platform
from .quota import QuotaManager
from .retention import RetentionSweeper, SweepReport

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


def download_ref_for(stored_filename: str, display_name: Optional[str] = None) -> str:
    ref = f"/temp/{stored_filename}"
    if display_name:
        ref += f"?filename={quote(display_name)}"
    return ref


@dataclass
class FetchRequest:
    url: str
    quality: str = "default"
    password: Optional[str] = None
    target_email: Optional[str] = None
    identity: str = ANONYMOUS
    user_agent: str = ""


@dataclass
class FetchResponse:
    title: str
    source_url: str
    platform: Platform
    kind: ArtifactKind
    download_ref: Optional[str] = None
    filename: Optional[str] = None
    alternate_files: List[Dict[str, Any]] = field(default_factory=list)
    resolved_quality: str = "Unknown"
    requested_quality: str = "default"
    watermark_free: bool = False
    size_bytes: int = 0
    from_cache: bool = False
    instructions: Optional[str] = None
    processing_reason: Optional[str] = None
    available_qualities: List[str] = field(default_factory=list)
    thumbnail: Optional[str] = None
    duration: Optional[float] = None
    artifact_id: Optional[str] = None
    strategy: str = ""
    attempts: List[ExtractionAttempt] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "title": self.title,
            "sourceUrl": self.source_url,
            "platform": self.platform.value,
            "kind": self.kind.value,
            "downloadRef": self.download_ref,
            "filename": self.filename,
            "alternateFiles": list(self.alternate_files),
            "resolvedQuality": self.resolved_quality,
            "requestedQuality": self.requested_quality,
            "watermarkFree": self.watermark_free,
            "sizeBytes": self.size_bytes,
            "fromCache": self.from_cache,
            "availableQualities": list(self.available_qualities),
            "thumbnail": self.thumbnail,
            "duration": self.duration,
            "artifactId": self.artifact_id,
            "attempts": [a.to_dict() for a in self.attempts],
        }
        if self.instructions is not None:
            data["instructions"] = self.instructions
        if self.processing_reason is not None:
            data["processingReason"] = self.processing_reason
        if self.extras:
            data.update(self.extras)
        return data


@dataclass
class FetchOutcome:
    ok: bool
    response: Optional[FetchResponse] = None
    error_code: Optional[str] = None
    message: str = ""
    attempts: List[ExtractionAttempt] = field(default_factory=list)

    def to_dict(self) -> dict:
        if self.ok:
            return {"success": True, "data": self.response.to_dict()}
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
            "attempts": [a.to_dict() for a in self.attempts],
        }


class InFlightRegistry:
    """One pending Future per URL; the caller that creates it is the leader."""

    def __init__(self):
        self._lock = threading.Lock()
        self._futures: Dict[str, Future] = {}

    def claim(self, key: str) -> Tuple[Future, bool]:
        with self._lock:
            future = self._futures.get(key)
            if future is not None:
                return future, False
            future = Future()
            self._futures[key] = future
            return future, True

    def release(self, key: str, future: Future):
        with self._lock:
            if self._futures.get(key) is future:
                del self._futures[key]

    def __len__(self):
        with self._lock:
            return len(self._futures)


class FetchService:
    """
    The fetch pipeline: classify, reuse from the store, otherwise run the
    platform chain, admit against the identity's quota and record.

    Concurrent requests for the same URL coalesce on one extraction. No
    lock is held while a chain runs; admission and recording for one
    identity are serialized.
    """

    def __init__(self, repository: ArtifactRepository, registry: ExtractorRegistry,
                 quota: QuotaManager, temp_area: TempArea,
                 sweeper: Optional[RetentionSweeper] = None,
                 retention: Optional[RetentionPolicy] = None):
        self.repository = repository
        self.registry = registry
        self.quota = quota
        self.temp_area = temp_area
        self.sweeper = sweeper
        if retention is None:
            retention = sweeper.policy if sweeper is not None else RetentionPolicy()
        self.retention = retention
        self.inflight = InFlightRegistry()

    # -- fetch -------------------------------------------------------

    def fetch(self, request: FetchRequest) -> FetchResponse:
        platform = detect_platform(request.url)
        if platform == Platform.UNKNOWN or self.registry.chain_for(platform) is None:
            raise UnsupportedPlatform(request.url)

        while True:
            cached = self.repository.lookup(request.url)
            if cached is not None:
                logger.info("cache hit url=%s artifact=%s", request.url, cached.id)
                return self.describe(cached, from_cache=True)

            future, leader = self.inflight.claim(request.url)
            if leader:
                # A previous leader may have recorded between lookup and claim
                cached = self.repository.lookup(request.url)
                if cached is None:
                    break
                response = self.describe(cached, from_cache=True)
                self.inflight.release(request.url, future)
                future.set_result(response)
                return response

            logger.info("waiting on in-flight extraction url=%s", request.url)
            try:
                response = future.result()
            except MediaDLError as e:
                logger.info("in-flight extraction failed, retrying url=%s error=%s", request.url, e)
                continue
            return replace(response, from_cache=True, attempts=[])

        try:
            response = self._extract(platform, request)
        except BaseException as e:
            self.inflight.release(request.url, future)
            future.set_exception(e)
            raise
        self.inflight.release(request.url, future)
        future.set_result(response)
        return response

    def fetch_safe(self, request: FetchRequest) -> FetchOutcome:
        """Like fetch, but expected failures come back as a typed outcome."""
        try:
            return FetchOutcome(ok=True, response=self.fetch(request))
        except ExtractionExhausted as e:
            return FetchOutcome(False, error_code=e.code, message=str(e), attempts=e.attempts)
        except MediaDLError as e:
            return FetchOutcome(False, error_code=e.code, message=str(e))

    def _extract(self, platform: Platform, request: FetchRequest) -> FetchResponse:
        chain = self.registry.chain_for(platform)
        extraction = ExtractionRequest(
            url=request.url,
            platform=platform,
            quality=request.quality or "default",
            password=request.password,
            target_email=request.target_email,
        )
        run = chain.run(extraction)
        result = run.result

        if not result.is_local:
            # Instructions and remote links are handed back as-is
            logger.info("unrecorded result kind=%s strategy=%s url=%s",
                        result.kind.value, result.strategy, request.url)
            return self._unrecorded(result, platform, request, run.attempts)

        size = result.size_bytes or self.temp_area.size_of(result.primary.path)
        with self.quota.lock_for(request.identity):
            admission = self.quota.admit(request.identity, size)
            if not admission.allowed:
                for path in result.produced_paths():
                    self.temp_area.remove(path)
                raise QuotaExceeded(request.identity, admission.limit, admission.usage, size)

            artifact = self._artifact_from(result, platform, request, size)
            self.repository.record(artifact)
        return self.describe(artifact, from_cache=False, attempts=run.attempts,
                             strategy=result.strategy, extras=result.extras)

    def _artifact_from(self, result: ExtractResult, platform: Platform,
                       request: FetchRequest, size: int) -> Artifact:
        primary = result.primary
        created_at = datetime.now()
        return Artifact(
            source_url=request.url,
            platform=platform,
            kind=result.kind,
            owner_identity=request.identity,
            title=result.title,
            primary_file=primary,
            alternate_files=list(result.alternates),
            requested_quality=request.quality or "default",
            resolved_quality=result.resolved_quality,
            watermark_free=result.watermark_free,
            size_bytes=size,
            filename=result.filename or primary.filename,
            thumbnail=result.thumbnail,
            duration=result.duration,
            available_qualities=list(result.available_qualities),
            user_agent=request.user_agent,
            created_at=created_at,
            last_accessed_at=created_at,
            expires_at=created_at + self.retention.max_artifact_age,
        )

    def _unrecorded(self, result: ExtractResult, platform: Platform, request: FetchRequest,
                    attempts: List[ExtractionAttempt]) -> FetchResponse:
        return FetchResponse(
            title=result.title,
            source_url=request.url,
            platform=platform,
            kind=result.kind,
            download_ref=result.download_ref,
            filename=result.filename,
            resolved_quality=result.resolved_quality,
            requested_quality=request.quality or "default",
            watermark_free=result.watermark_free,
            size_bytes=result.size_bytes,
            instructions=result.instructions,
            processing_reason=result.processing_reason,
            available_qualities=list(result.available_qualities),
            thumbnail=result.thumbnail,
            duration=result.duration,
            strategy=result.strategy,
            attempts=list(attempts),
            extras=dict(result.extras),
        )

    def describe(self, artifact: Artifact, from_cache: bool = True,
                 attempts: Optional[List[ExtractionAttempt]] = None,
                 strategy: str = "", extras: Optional[dict] = None) -> FetchResponse:
        return FetchResponse(
            title=artifact.title,
            source_url=artifact.source_url,
            platform=artifact.platform,
            kind=artifact.kind,
            download_ref=(download_ref_for(artifact.stored_filename, artifact.filename)
                          if artifact.stored_filename else None),
            filename=artifact.filename,
            alternate_files=[self._alternate_dict(alt) for alt in artifact.alternate_files],
            resolved_quality=artifact.resolved_quality,
            requested_quality=artifact.requested_quality,
            watermark_free=artifact.watermark_free,
            size_bytes=artifact.size_bytes,
            from_cache=from_cache,
            available_qualities=list(artifact.available_qualities),
            thumbnail=artifact.thumbnail,
            duration=artifact.duration,
            artifact_id=artifact.id,
            strategy=strategy,
            attempts=list(attempts or []),
            extras=dict(extras or {}),
        )

    @staticmethod
    def _alternate_dict(alt: AlternateFile) -> dict:
        return {
            "label": alt.label,
            "purpose": alt.purpose.value,
            "filename": alt.filename or alt.stored_filename,
            "downloadRef": download_ref_for(alt.stored_filename, alt.filename),
        }

    # -- history -----------------------------------------------------

    def history(self, identity: str = ANONYMOUS, limit: int = 50) -> List[Artifact]:
        return self.repository.history(identity, limit)

    def check(self, url: str) -> Optional[Artifact]:
        """The stored artifact a fetch of url would reuse, if any."""
        return self.repository.lookup(url)

    def redownload(self, artifact_id: str, identity: str = ANONYMOUS) -> FetchResponse:
        artifact = self.repository.get(artifact_id, identity)
        if artifact is None or not artifact.is_live:
            raise ArtifactNotFound(artifact_id)
        if not self.temp_area.exists(self.temp_area.path_for(artifact.stored_filename or "")):
            # history() reconciles the missing file
            self.repository.history(identity)
            raise ArtifactNotFound(artifact_id)
        self.repository.touch(artifact_id, identity)
        return self.describe(artifact, from_cache=True)

    def delete(self, artifact_id: str, identity: str = ANONYMOUS) -> Artifact:
        return self.repository.delete(artifact_id, identity)

    def bulk_delete(self, artifact_ids: List[str], identity: str = ANONYMOUS) -> List[dict]:
        results = []
        for artifact_id in artifact_ids:
            try:
                self.repository.delete(artifact_id, identity)
                results.append({"id": artifact_id, "success": True})
            except ArtifactNotFound as e:
                results.append({"id": artifact_id, "success": False, "message": str(e)})
        return results

    # -- storage -----------------------------------------------------

    def storage_stats(self, identity: Optional[str] = None) -> dict:
        if identity:
            return self.quota.storage_stats(identity)
        return self.quota.global_stats()

    def sweep(self) -> SweepReport:
        if self.sweeper is None:
            raise RuntimeError("no retention sweeper configured")
        return self.sweeper.sweep()
