import os
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from mediadl.core.entities import RetentionPolicy

logger = logging.getLogger(__name__)

GIB = 1024 * 1024 * 1024

_TRUTHY = {"1", "true", "yes", "on"}


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        logger.warning("invalid integer for %s=%r, using default %s", key, raw, default)
        return default


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return float(str(raw).strip())
    except ValueError:
        logger.warning("invalid number for %s=%r, using default %s", key, raw, default)
        return default


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    return str(raw).strip().lower() in _TRUTHY


@dataclass
class FshareSettings:
    enabled: bool = False
    email: Optional[str] = None
    password: Optional[str] = None
    app_key: Optional[str] = None
    api_url: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.email and self.password and self.app_key)


@dataclass
class Settings:
    """
    Process-wide configuration.

    Built once by bootstrap from the environment (and a local .env file when
    present). Components receive the values they need, never this object's
    globals.
    """
    temp_dir: Path = field(default_factory=lambda: Path("temp"))
    ytdlp_path: Optional[str] = None
    process_timeout: float = 180.0
    probe_timeout: float = 60.0
    http_timeout: float = 15.0
    download_timeout: float = 30.0
    max_output_bytes: int = 10 * 1024 * 1024
    max_artifact_age_days: float = 7
    sweep_interval_hours: float = 6
    max_history_per_identity: int = 100
    default_storage_limit: int = 2 * GIB
    audio_alternates: bool = True
    log_level: str = "INFO"
    rapid_api_key: Optional[str] = None
    fshare: FshareSettings = field(default_factory=FshareSettings)

    @property
    def retention(self) -> RetentionPolicy:
        return RetentionPolicy(
            max_artifact_age=timedelta(days=self.max_artifact_age_days),
            sweep_interval=timedelta(hours=self.sweep_interval_hours),
            max_history_per_identity=self.max_history_per_identity,
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        fshare = FshareSettings(
            enabled=_get_bool(env, "FSHARE_ENABLED", False) or _get_bool(env, "FSHARE_ENABLE", False),
            email=env.get("FSHARE_EMAIL") or None,
            password=env.get("FSHARE_PASSWORD") or None,
            app_key=env.get("FSHARE_APP_KEY") or None,
            api_url=env.get("FSHARE_API_URL") or None,
        )

        return cls(
            temp_dir=Path(env.get("MEDIADL_TEMP_DIR") or "temp"),
            ytdlp_path=env.get("MEDIADL_YTDLP_PATH") or None,
            process_timeout=_get_float(env, "MEDIADL_PROCESS_TIMEOUT", 180.0),
            probe_timeout=_get_float(env, "MEDIADL_PROBE_TIMEOUT", 60.0),
            http_timeout=_get_float(env, "MEDIADL_HTTP_TIMEOUT", 15.0),
            download_timeout=_get_float(env, "MEDIADL_DOWNLOAD_TIMEOUT", 30.0),
            max_artifact_age_days=_get_float(env, "MEDIADL_MAX_ARTIFACT_AGE_DAYS", 7),
            sweep_interval_hours=_get_float(env, "MEDIADL_SWEEP_INTERVAL_HOURS", 6),
            max_history_per_identity=_get_int(env, "MEDIADL_MAX_HISTORY", 100),
            default_storage_limit=_get_int(env, "MEDIADL_DEFAULT_STORAGE_LIMIT", 2 * GIB),
            audio_alternates=_get_bool(env, "MEDIADL_AUDIO_ALTERNATES", True),
            log_level=(env.get("MEDIADL_LOG_LEVEL") or "INFO").upper(),
            rapid_api_key=env.get("RAPID_API_KEY") or None,
            fshare=fshare,
        )
