import os
import threading
from datetime import timedelta

import pytest

from conftest import FakeNetwork, FakeRunner

from mediadl.app.quota import QuotaManager
from mediadl.app.retention import RetentionSweeper
from mediadl.app.services import FetchRequest, FetchService, download_ref_for
from mediadl.core.config import FshareSettings
from mediadl.core.entities import ArtifactKind, ArtifactStatus, Platform, RetentionPolicy
from mediadl.core.errors import (
    ArtifactNotFound, ExtractionExhausted, MediaDLError, NoContentFound, QuotaExceeded,
    UnsupportedPlatform,
)
from mediadl.extractors.base import BaseExtractor
from mediadl.extractors.fshare.client import FshareClient
from mediadl.extractors.fshare.extractor import FshareExtractor, FshareInstructionsExtractor
from mediadl.extractors.registry import ExtractorRegistry
from mediadl.extractors.result import ExtractResult
from mediadl.extractors.youtube.extractor import YouTubeExtractor
from mediadl.infra.process.ytdlp import YtDlpTool

YT_URL = "https://www.youtube.com/watch?v=abc123"
FSHARE_URL = "https://www.fshare.vn/file/ABCDEF123456"
TWEET_URL = "https://x.com/someone/status/1"

THREE_HEIGHTS = {"title": "Sample Video", "formats": [{"height": 1080}, {"height": 720}, {"height": 480}]}


class _Blocking(BaseExtractor):
    """Writes a small file once released; fails the first `failures` calls."""
    name = "blocking"

    def __init__(self, temp_area, failures=0):
        super().__init__(temp_area)
        self.started = threading.Event()
        self.release = threading.Event()
        self.failures = failures
        self.calls = 0

    def attempt(self, request):
        self.calls += 1
        self.started.set()
        self.release.wait(5)
        if self.calls <= self.failures:
            raise NoContentFound(self.name, "nothing yet")
        path = self.temp_area.new_path("mp4")
        path.write_bytes(b"v" * 100)
        return ExtractResult(kind=ArtifactKind.VIDEO, title="tweet", primary=self._media_file(path))


def _service(temp_area, repo, runner=None, default_limit=10 ** 9, extra=None):
    registry = ExtractorRegistry()
    ytdlp = YtDlpTool(runner or FakeRunner(info=THREE_HEIGHTS), binary=["yt-dlp"])
    registry.register(Platform.YOUTUBE, YouTubeExtractor(temp_area, ytdlp, audio_alternates=False))
    client = FshareClient(FakeNetwork(), FshareSettings())
    registry.register(Platform.FSHARE, FshareExtractor(temp_area, client))
    registry.register(Platform.FSHARE, FshareInstructionsExtractor(temp_area, client))
    if extra is not None:
        registry.register(Platform.TWITTER, extra)
    return FetchService(repo, registry, QuotaManager(repo, default_limit=default_limit), temp_area)


def test_fresh_fetch_negotiates_quality_and_records(temp_area, repo) -> None:
    service = _service(temp_area, repo)

    response = service.fetch(FetchRequest(YT_URL, quality="720p", identity="alice"))

    assert response.kind == ArtifactKind.VIDEO
    assert response.resolved_quality == "720p"
    assert response.from_cache is False
    assert response.strategy == "youtube-ytdlp"
    assert len(response.attempts) == 1
    assert response.download_ref.startswith("/temp/")
    assert "?filename=Sample_Video_720p.mp4" in response.download_ref
    assert [a.source_url for a in repo.history("alice")] == [YT_URL]


def test_second_fetch_is_served_from_store(temp_area, repo) -> None:
    runner = FakeRunner(info=THREE_HEIGHTS)
    service = _service(temp_area, repo, runner=runner)
    first = service.fetch(FetchRequest(YT_URL, quality="720p", identity="alice"))
    commands = len(runner.commands)

    second = service.fetch(FetchRequest(YT_URL, quality="1080p", identity="bob"))

    assert second.from_cache is True
    assert second.attempts == []
    assert second.artifact_id == first.artifact_id
    # Reuse keys on the URL only, so the requested quality does not matter
    assert second.resolved_quality == "720p"
    assert len(runner.commands) == commands


def test_missing_file_forces_fresh_extraction(temp_area, repo) -> None:
    service = _service(temp_area, repo)
    first = service.fetch(FetchRequest(YT_URL))
    os.remove(repo.get(first.artifact_id, "anonymous").primary_file.path)

    again = service.fetch(FetchRequest(YT_URL))

    assert again.from_cache is False
    assert again.artifact_id != first.artifact_id
    assert repo.get(first.artifact_id, "anonymous").status == ArtifactStatus.DELETED


def test_unconfigured_fshare_returns_instructions_unrecorded(temp_area, repo) -> None:
    service = _service(temp_area, repo)

    response = service.fetch(FetchRequest(FSHARE_URL, password="pw", identity="alice"))

    assert response.kind == ArtifactKind.INSTRUCTIONS
    assert response.processing_reason == "SERVICE_NOT_CONFIGURED"
    assert response.download_ref is None
    assert response.to_dict()["processingReason"] == "SERVICE_NOT_CONFIGURED"
    assert repo.all_records("alice") == []
    assert service.check(FSHARE_URL) is None


def test_quota_denial_discards_produced_files(temp_area, repo) -> None:
    runner = FakeRunner(info=THREE_HEIGHTS, payload=b"x" * 2_000_000)
    service = _service(temp_area, repo, runner=runner, default_limit=1_000_000)

    with pytest.raises(QuotaExceeded) as exc:
        service.fetch(FetchRequest(YT_URL, identity="alice"))

    assert exc.value.code == "QUOTA_EXCEEDED"
    assert list(temp_area.files()) == []
    assert repo.all_records("alice") == []


def test_quota_allows_privileged_identity(temp_area, repo) -> None:
    runner = FakeRunner(info=THREE_HEIGHTS, payload=b"x" * 2_000_000)
    service = _service(temp_area, repo, runner=runner, default_limit=1_000_000)
    service.quota.set_role("root", "super_admin")

    response = service.fetch(FetchRequest(YT_URL, identity="root"))

    assert response.size_bytes == 2_000_000


@pytest.mark.parametrize("url", ["https://example.com/video.mp4", "not a url", "https://www.tiktok.com/@a/video/1"])
def test_unsupported_urls(temp_area, repo, url) -> None:
    with pytest.raises(UnsupportedPlatform):
        _service(temp_area, repo).fetch(FetchRequest(url))


def test_fetch_safe_reports_exhaustion(temp_area, repo) -> None:
    service = _service(temp_area, repo, runner=FakeRunner(fail_probe=True))

    outcome = service.fetch_safe(FetchRequest(YT_URL))

    assert outcome.ok is False
    assert outcome.error_code == "EXTRACTION_EXHAUSTED"
    assert outcome.attempts[0].strategy == "youtube-ytdlp"
    assert outcome.to_dict()["attempts"][0]["outcome"] == "no_content"


def test_fetch_safe_wraps_success(temp_area, repo) -> None:
    outcome = _service(temp_area, repo).fetch_safe(FetchRequest(YT_URL))

    assert outcome.ok
    assert outcome.to_dict()["success"] is True
    assert outcome.to_dict()["data"]["platform"] == Platform.YOUTUBE.value


def _run_in_thread(service, request, sink):
    def target():
        try:
            sink.append(service.fetch(request))
        except ExtractionExhausted as e:
            sink.append(e)
    thread = threading.Thread(target=target)
    thread.start()
    return thread


def test_concurrent_requests_coalesce_on_one_extraction(temp_area, repo) -> None:
    blocking = _Blocking(temp_area)
    service = _service(temp_area, repo, extra=blocking)
    leader_out, follower_out = [], []

    leader = _run_in_thread(service, FetchRequest(TWEET_URL, identity="alice"), leader_out)
    assert blocking.started.wait(5)
    follower = _run_in_thread(service, FetchRequest(TWEET_URL, identity="bob"), follower_out)
    blocking.release.set()
    leader.join(5)
    follower.join(5)

    assert blocking.calls == 1
    assert leader_out[0].from_cache is False
    assert follower_out[0].from_cache is True
    assert follower_out[0].artifact_id == leader_out[0].artifact_id
    assert len(service.inflight) == 0
    assert len(repo.all_records()) == 1


def test_follower_retries_after_leader_failure(temp_area, repo) -> None:
    blocking = _Blocking(temp_area, failures=1)
    service = _service(temp_area, repo, extra=blocking)
    leader_out, follower_out = [], []

    leader = _run_in_thread(service, FetchRequest(TWEET_URL), leader_out)
    assert blocking.started.wait(5)
    follower = _run_in_thread(service, FetchRequest(TWEET_URL), follower_out)
    blocking.release.set()
    leader.join(5)
    follower.join(5)

    assert isinstance(leader_out[0], ExtractionExhausted)
    assert follower_out[0].kind == ArtifactKind.VIDEO
    assert blocking.calls == 2


def test_redownload_and_delete(temp_area, repo) -> None:
    service = _service(temp_area, repo)
    fetched = service.fetch(FetchRequest(YT_URL, identity="alice"))

    again = service.redownload(fetched.artifact_id, "alice")
    assert again.download_ref == fetched.download_ref

    with pytest.raises(ArtifactNotFound):
        service.redownload(fetched.artifact_id, "bob")

    service.delete(fetched.artifact_id, "alice")
    with pytest.raises(ArtifactNotFound):
        service.redownload(fetched.artifact_id, "alice")
    assert service.history("alice") == []


def test_bulk_delete_reports_per_id(temp_area, repo) -> None:
    service = _service(temp_area, repo)
    fetched = service.fetch(FetchRequest(YT_URL, identity="alice"))

    results = service.bulk_delete([fetched.artifact_id, "missing"], "alice")

    assert results[0] == {"id": fetched.artifact_id, "success": True}
    assert results[1]["success"] is False


def test_storage_stats_per_identity_and_global(temp_area, repo) -> None:
    service = _service(temp_area, repo)
    service.fetch(FetchRequest(YT_URL, identity="alice"))

    assert service.storage_stats("alice")["fileCount"] == 1
    assert service.storage_stats()["isUnlimited"] is True


def test_sweep_without_sweeper_is_an_error(temp_area, repo) -> None:
    with pytest.raises(RuntimeError):
        _service(temp_area, repo).sweep()


def test_download_ref_quotes_display_name() -> None:
    assert download_ref_for("abc.mp4", "My Clip 720p.mp4") == "/temp/abc.mp4?filename=My%20Clip%20720p.mp4"
    assert download_ref_for("abc.mp4") == "/temp/abc.mp4"


class _Rendezvous(BaseExtractor):
    """Every caller finishes extracting before any of them reaches admission."""
    name = "rendezvous"

    def __init__(self, temp_area, size, parties):
        super().__init__(temp_area)
        self.size = size
        self.barrier = threading.Barrier(parties)

    def attempt(self, request):
        path = self.temp_area.new_path("mp4")
        path.write_bytes(b"v" * self.size)
        self.barrier.wait(5)
        return ExtractResult(kind=ArtifactKind.VIDEO, title="tweet", primary=self._media_file(path))


def test_concurrent_fetches_cannot_exceed_quota(temp_area, repo) -> None:
    limit = 1_000_000
    extractor = _Rendezvous(temp_area, size=600_000, parties=2)
    service = _service(temp_area, repo, default_limit=limit, extra=extractor)
    out = []

    def target(url):
        try:
            out.append(service.fetch(FetchRequest(url, identity="alice")))
        except MediaDLError as e:
            out.append(e)

    threads = [threading.Thread(target=target, args=(f"https://x.com/someone/status/{n}",)) for n in (1, 2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert len(out) == 2
    assert len([o for o in out if isinstance(o, QuotaExceeded)]) == 1
    assert len(repo.history("alice")) == 1
    assert repo.usage_bytes("alice") <= limit
    # The denied download's file is gone
    assert len([p for p in temp_area.files() if p.suffix == ".mp4"]) == 1


def test_expiry_follows_retention_window(temp_area, repo) -> None:
    registry = _service(temp_area, repo).registry
    service = FetchService(repo, registry, QuotaManager(repo), temp_area,
                           retention=RetentionPolicy(max_artifact_age=timedelta(days=2)))

    fetched = service.fetch(FetchRequest(YT_URL, identity="alice"))

    artifact = repo.get(fetched.artifact_id, "alice")
    assert artifact.expires_at - artifact.created_at == timedelta(days=2)


def test_expiry_defaults_to_sweeper_policy(temp_area, repo) -> None:
    registry = _service(temp_area, repo).registry
    sweeper = RetentionSweeper(temp_area, repo, RetentionPolicy(max_artifact_age=timedelta(hours=12)))
    service = FetchService(repo, registry, QuotaManager(repo), temp_area, sweeper=sweeper)

    fetched = service.fetch(FetchRequest(YT_URL, identity="alice"))

    artifact = repo.get(fetched.artifact_id, "alice")
    assert artifact.expires_at - artifact.created_at == timedelta(hours=12)
