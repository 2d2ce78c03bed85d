import logging
import sys
from typing import Optional

from mediadl.core.config import Settings
from mediadl.core.entities import Platform
from mediadl.core.workspace import TempArea
from mediadl.infra.network.http import HttpNetworkAdapter
from mediadl.infra.persistence.json_store import JsonArtifactRepository
from mediadl.infra.process.executor import ProcessExecutor
from mediadl.infra.process.ytdlp import YtDlpTool, resolve_binary
from mediadl.extractors.chain import ExtractionChain
from mediadl.extractors.registry import ExtractorRegistry, FacebookRouter
from mediadl.extractors.youtube.extractor import YouTubeExtractor
from mediadl.extractors.twitter.extractor import TwitterExtractor
from mediadl.extractors.tiktok.extractor import TikTokApiExtractor, TikTokToolExtractor, default_services
from mediadl.extractors.instagram.extractor import InstagramApiExtractor, InstagramToolExtractor
from mediadl.extractors.facebook.extractor import (
    FacebookApiVersionVideoExtractor, FacebookCdnPhotoExtractor, FacebookOgImageExtractor,
    FacebookPageScrapeExtractor, FacebookPhotoInstructionsExtractor, FacebookThumbnailExtractor,
    FacebookUserAgentVideoExtractor, FacebookVideoExtractor,
)
from mediadl.extractors.fshare.client import FshareClient
from mediadl.extractors.fshare.extractor import FshareExtractor, FshareInstructionsExtractor
from mediadl.app.quota import QuotaManager
from mediadl.app.retention import RetentionSweeper
from mediadl.app.services import FetchRequest, FetchService
from mediadl.app.commands import (
    CommandBus, FetchMedia, ListHistory, CheckUrl, RedownloadArtifact, DeleteArtifact, RunSweep,
    StorageStats, ListUsers, SetStorageLimit, SetRole,
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO"):
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def build_registry(temp_area: TempArea, ytdlp: YtDlpTool, network: HttpNetworkAdapter,
                   settings: Settings, fshare: FshareClient) -> ExtractorRegistry:
    """Wire every platform chain. Order inside a chain is the fallback order."""
    registry = ExtractorRegistry()
    audio = settings.audio_alternates

    registry.register(Platform.YOUTUBE, YouTubeExtractor(temp_area, ytdlp, audio_alternates=audio))

    registry.register(Platform.TIKTOK, TikTokToolExtractor(temp_area, ytdlp, audio_alternates=audio))
    for service in default_services():
        registry.register(Platform.TIKTOK, TikTokApiExtractor(
            temp_area, network, service, api_key=settings.rapid_api_key, timeout=settings.http_timeout,
        ))

    registry.register(Platform.INSTAGRAM, InstagramToolExtractor(temp_area, ytdlp, audio_alternates=audio))
    registry.register(Platform.INSTAGRAM, InstagramApiExtractor(
        temp_area, network, api_key=settings.rapid_api_key, timeout=settings.http_timeout,
    ))

    registry.register(Platform.TWITTER, TwitterExtractor(temp_area, ytdlp, audio_alternates=audio))

    video_chain = ExtractionChain(Platform.FACEBOOK, [
        FacebookVideoExtractor(temp_area, ytdlp, audio_alternates=audio),
        FacebookUserAgentVideoExtractor(temp_area, ytdlp, audio_alternates=audio),
        FacebookApiVersionVideoExtractor(temp_area, ytdlp, audio_alternates=audio),
    ])
    photo_chain = ExtractionChain(Platform.FACEBOOK, [
        FacebookCdnPhotoExtractor(temp_area, network),
        FacebookPageScrapeExtractor(temp_area, network, timeout=settings.http_timeout,
                                    download_timeout=settings.download_timeout),
        FacebookThumbnailExtractor(temp_area, ytdlp),
        FacebookOgImageExtractor(temp_area, network, timeout=settings.http_timeout,
                                 download_timeout=settings.download_timeout),
        FacebookPhotoInstructionsExtractor(temp_area),
    ])
    registry.route(Platform.FACEBOOK, FacebookRouter(video_chain, photo_chain))

    registry.register(Platform.FSHARE, FshareExtractor(temp_area, fshare))
    registry.register(Platform.FSHARE, FshareInstructionsExtractor(temp_area, fshare))
    return registry


def create_container(settings: Optional[Settings] = None) -> dict:
    # 1. Config
    settings = settings or Settings.from_env()

    # 2. Infra
    temp_area = TempArea(settings.temp_dir)
    repo = JsonArtifactRepository(temp_area, settings.max_history_per_identity)
    executor = ProcessExecutor(timeout=settings.process_timeout, max_output_bytes=settings.max_output_bytes)
    ytdlp = YtDlpTool(executor, binary=resolve_binary(settings.ytdlp_path),
                      timeout=settings.process_timeout, probe_timeout=settings.probe_timeout)
    network = HttpNetworkAdapter(timeout=settings.http_timeout, download_timeout=settings.download_timeout)
    fshare = FshareClient(network, settings.fshare)

    # 3. Services
    registry = build_registry(temp_area, ytdlp, network, settings, fshare)
    quota = QuotaManager(repo, settings.default_storage_limit, temp_area=temp_area)
    sweeper = RetentionSweeper(temp_area, repo, settings.retention)
    service = FetchService(repo, registry, quota, temp_area, sweeper=sweeper, retention=settings.retention)

    # 4. Handlers
    bus = CommandBus()

    def handle_fetch(cmd: FetchMedia):
        return service.fetch_safe(FetchRequest(
            url=cmd.url,
            quality=cmd.quality,
            password=cmd.password,
            target_email=cmd.target_email,
            identity=cmd.identity,
            user_agent=cmd.user_agent,
        ))

    def handle_delete(cmd: DeleteArtifact):
        return service.bulk_delete(cmd.ids, cmd.identity)

    def handle_set_limit(cmd: SetStorageLimit):
        quota.set_storage_limit(cmd.identity, cmd.limit_bytes)
        return quota.record_for(cmd.identity)

    def handle_set_role(cmd: SetRole):
        quota.set_role(cmd.identity, cmd.role)
        return quota.record_for(cmd.identity)

    bus.register(FetchMedia, handle_fetch)
    bus.register(ListHistory, lambda cmd: service.history(cmd.identity, cmd.limit))
    bus.register(CheckUrl, lambda cmd: service.check(cmd.url))
    bus.register(RedownloadArtifact, lambda cmd: service.redownload(cmd.id, cmd.identity))
    bus.register(DeleteArtifact, handle_delete)
    bus.register(RunSweep, lambda cmd: service.sweep())
    bus.register(StorageStats, lambda cmd: service.storage_stats(cmd.identity))
    bus.register(ListUsers, lambda cmd: quota.users_overview())
    bus.register(SetStorageLimit, handle_set_limit)
    bus.register(SetRole, handle_set_role)

    return {
        "settings": settings,
        "temp_area": temp_area,
        "repository": repo,
        "executor": executor,
        "ytdlp": ytdlp,
        "network": network,
        "fshare": fshare,
        "registry": registry,
        "quota": quota,
        "sweeper": sweeper,
        "service": service,
        "bus": bus,
    }


def start_container(container: dict):
    """Start background jobs. Pair with shutdown_container."""
    container["sweeper"].start()


def shutdown_container(container: dict):
    container["sweeper"].shutdown()
