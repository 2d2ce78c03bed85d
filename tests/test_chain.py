import pytest

from conftest import FakeRunner

from mediadl.core.entities import ArtifactKind, AttemptOutcome, Platform
from mediadl.core.errors import ExtractionExhausted, NoContentFound, UpstreamTimeout, UpstreamUnavailable
from mediadl.extractors.base import BaseExtractor
from mediadl.extractors.chain import ExtractionChain
from mediadl.extractors.quality import LOWEST_COMMON_FORMAT, resolve_format
from mediadl.extractors.registry import ExtractorRegistry, FacebookRouter
from mediadl.extractors.result import ExtractionRequest, ExtractResult
from mediadl.extractors.youtube.extractor import YouTubeExtractor
from mediadl.infra.process.ytdlp import YtDlpTool


class _Scripted(BaseExtractor):
    def __init__(self, temp_area, name, error=None):
        super().__init__(temp_area)
        self.name = name
        self.error = error
        self.calls = 0

    def attempt(self, request):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ExtractResult(kind=ArtifactKind.VIDEO, title=self.name)


def test_first_success_wins_and_later_strategies_do_not_run(temp_area) -> None:
    first = _Scripted(temp_area, "first")
    second = _Scripted(temp_area, "second")
    run = ExtractionChain(Platform.TWITTER, [first, second]).run(ExtractionRequest("https://x.com/a"))

    assert run.result.strategy == "first"
    assert second.calls == 0
    assert [a.outcome for a in run.attempts] == [AttemptOutcome.SUCCESS]


def test_failures_are_recorded_and_chain_advances(temp_area) -> None:
    chain = ExtractionChain(Platform.TIKTOK, [
        _Scripted(temp_area, "slow", UpstreamTimeout("slow", 10)),
        _Scripted(temp_area, "empty", NoContentFound("empty")),
        _Scripted(temp_area, "broken", UpstreamUnavailable("svc", "HTTP_500")),
        _Scripted(temp_area, "good"),
    ])
    run = chain.run(ExtractionRequest("https://tiktok.com/@a/video/1"))

    assert run.result.strategy == "good"
    assert [a.outcome for a in run.attempts] == [
        AttemptOutcome.TIMEOUT, AttemptOutcome.NO_CONTENT, AttemptOutcome.UPSTREAM_ERROR, AttemptOutcome.SUCCESS,
    ]
    assert run.attempts[2].reason == "HTTP_500"


def test_each_strategy_runs_at_most_once(temp_area) -> None:
    strategies = [_Scripted(temp_area, f"s{i}", NoContentFound(f"s{i}")) for i in range(3)]
    with pytest.raises(ExtractionExhausted) as exc:
        ExtractionChain(Platform.YOUTUBE, strategies).run(ExtractionRequest("https://youtu.be/a"))

    assert [s.calls for s in strategies] == [1, 1, 1]
    assert [a.strategy for a in exc.value.attempts] == ["s0", "s1", "s2"]
    assert exc.value.platform == "YouTube"


def test_unexpected_exceptions_are_contained(temp_area) -> None:
    chain = ExtractionChain(Platform.YOUTUBE, [
        _Scripted(temp_area, "buggy", KeyError("formats")),
        _Scripted(temp_area, "good"),
    ])
    run = chain.run(ExtractionRequest("https://youtu.be/a"))

    assert run.attempts[0].outcome == AttemptOutcome.UPSTREAM_ERROR
    assert run.result.strategy == "good"


def test_registry_keeps_registration_order(temp_area) -> None:
    registry = ExtractorRegistry()
    registry.register(Platform.TIKTOK, _Scripted(temp_area, "a"))
    registry.register(Platform.TIKTOK, _Scripted(temp_area, "b"))

    assert registry.chain_for(Platform.TIKTOK).strategy_names == ["a", "b"]
    assert registry.chain_for(Platform.YOUTUBE) is None


def test_facebook_router_picks_chain_by_url(temp_area) -> None:
    video = ExtractionChain(Platform.FACEBOOK, [_Scripted(temp_area, "video")])
    photo = ExtractionChain(Platform.FACEBOOK, [_Scripted(temp_area, "photo")])
    router = FacebookRouter(video, photo)

    assert router.run(ExtractionRequest("https://www.facebook.com/photo?fbid=1")).result.strategy == "photo"
    assert router.run(ExtractionRequest("https://www.facebook.com/watch?v=1")).result.strategy == "video"


# -- yt-dlp video strategy ----------------------------------------------

def _youtube(temp_area, runner, audio=True):
    return YouTubeExtractor(temp_area, YtDlpTool(runner, binary=["yt-dlp"]), audio_alternates=audio)


def test_youtube_negotiated_download(temp_area) -> None:
    runner = FakeRunner(info={"title": "My Clip!", "duration": 12,
                              "formats": [{"height": 1080}, {"height": 720}, {"height": 480}]})
    result = _youtube(temp_area, runner).attempt(ExtractionRequest("https://youtu.be/a", quality="720p"))

    assert result.kind == ArtifactKind.VIDEO
    assert result.resolved_quality == "720p"
    assert result.filename == "My_Clip_720p.mp4"
    assert result.available_qualities == ["1080p", "720p", "480p"]
    assert temp_area.exists(result.primary.path)
    assert [alt.label for alt in result.alternates] == ["Audio Only (128 Kbps)", "Audio Only (320 Kbps)"]
    assert runner.downloads[0][runner.downloads[0].index("-f") + 1] == resolve_format("720p")


def test_youtube_retries_once_with_lowest_common_format(temp_area) -> None:
    runner = FakeRunner(info={"title": "t", "formats": [{"height": 720}]},
                        fail_formats={resolve_format("720p")})
    result = _youtube(temp_area, runner, audio=False).attempt(
        ExtractionRequest("https://youtu.be/a", quality="720p"))

    assert result.resolved_quality == "360p"
    assert len(runner.downloads) == 2
    assert LOWEST_COMMON_FORMAT in runner.downloads[1]


def test_youtube_empty_file_is_no_content(temp_area) -> None:
    runner = FakeRunner(payload=b"")
    with pytest.raises(NoContentFound):
        _youtube(temp_area, runner, audio=False).attempt(ExtractionRequest("https://youtu.be/a"))

    assert list(temp_area.files()) == []


def test_youtube_probe_failure_is_no_content(temp_area) -> None:
    with pytest.raises(NoContentFound):
        _youtube(temp_area, FakeRunner(fail_probe=True)).attempt(ExtractionRequest("https://youtu.be/a"))


def test_audio_failures_do_not_fail_the_video(temp_area) -> None:
    runner = FakeRunner(fail_audio=True)
    result = _youtube(temp_area, runner).attempt(ExtractionRequest("https://youtu.be/a"))

    assert result.alternates == []
    assert temp_area.exists(result.primary.path)


def test_timeout_propagates_as_upstream_timeout(temp_area) -> None:
    with pytest.raises(UpstreamTimeout):
        _youtube(temp_area, FakeRunner(timeout_all=True)).attempt(ExtractionRequest("https://youtu.be/a"))
