import logging
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from mediadl.core.config import FshareSettings
from mediadl.core.errors import UpstreamUnavailable
from mediadl.core.interfaces import HttpResponse, NetworkAdapter
from mediadl.infra.network.http import NetworkError
from ..instructions import (
    API_FAILED, LOGIN_FAILED, QUOTA_EXCEEDED, SERVICE_NOT_CONFIGURED, fshare_file_code,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS = ("https://api.fshare.vn", "https://api2.fshare.vn", "https://www.fshare.vn/api")
DAILY_QUOTA_BYTES = 150 * 1024 * 1024 * 1024
SESSION_TTL = 24 * 60 * 60

_LOGIN_UA = ("Mozilla/5.0 (Windows NT 10.0; WOW64) AppleWebKit/537.36 (KHTML, like Gecko) "
             "Chrome/79.0.3945.130 Safari/537.36")
_API_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


@dataclass
class FshareFileInfo:
    name: str
    size: int = 0
    link_type: Optional[int] = None

    @property
    def is_folder(self) -> bool:
        return self.link_type == 1


@dataclass
class FshareLink:
    url: str
    filename: str
    size: int = 0


def _is_html(response: HttpResponse) -> bool:
    content_type = (response.headers.get("Content-Type") or response.headers.get("content-type") or "").lower()
    return "text/html" in content_type or response.text.lstrip().lower().startswith("<!doctype html")


def _json_or_none(response: HttpResponse):
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class FshareClient:
    """
    Client for the Fshare file-hosting API.

    Logs in against the first endpoint that answers with a token, keeps the
    session for 24 hours, and tracks a local daily download quota. Every
    failure is raised as UpstreamUnavailable carrying a reason code.
    """

    def __init__(self, network: NetworkAdapter, settings: FshareSettings, timeout: float = 30.0,
                 clock: Callable[[], float] = time.time,
                 daily_quota_bytes: int = DAILY_QUOTA_BYTES):
        self.network = network
        self.settings = settings
        self.timeout = timeout
        self.clock = clock
        self.daily_quota_bytes = daily_quota_bytes

        self.base_url: Optional[str] = None
        self.session_token: Optional[str] = None
        self.session_id: Optional[str] = None
        self.token_expiry: float = 0.0

        self.daily_used = 0
        self._quota_day = date.today()
        self._lock = threading.RLock()

    @property
    def endpoints(self) -> List[str]:
        return [self.settings.api_url or DEFAULT_ENDPOINTS[0]] + list(DEFAULT_ENDPOINTS[1:])

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    def _require_configured(self):
        if not self.is_configured:
            raise UpstreamUnavailable("fshare", SERVICE_NOT_CONFIGURED, "service is not configured or disabled")

    # -- session -----------------------------------------------------

    def session_valid(self) -> bool:
        return bool(self.session_token) and self.clock() < self.token_expiry

    def login(self) -> str:
        self._require_configured()
        payload = {
            "user_email": self.settings.email,
            "password": self.settings.password,
            "app_key": self.settings.app_key,
        }
        headers = {
            "Content-Type": "application/json",
            "User-Agent": _LOGIN_UA,
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.9,vi;q=0.8",
        }

        last_error = "no endpoint answered"
        for endpoint in self.endpoints:
            try:
                response = self.network.post(f"{endpoint}/api/user/login", json_body=payload,
                                             headers=headers, timeout=self.timeout)
            except NetworkError as e:
                last_error = str(e)
                logger.info("fshare login endpoint=%s error=%s", endpoint, e)
                continue

            if _is_html(response):
                last_error = f"{endpoint} returned an HTML page"
                logger.info("fshare login endpoint=%s returned HTML", endpoint)
                continue

            data = _json_or_none(response) or {}
            if data.get("code") == 200 and data.get("token"):
                with self._lock:
                    self.base_url = endpoint
                    self.session_token = data["token"]
                    self.session_id = data.get("session_id")
                    self.token_expiry = self.clock() + SESSION_TTL
                logger.info("fshare login ok endpoint=%s", endpoint)
                return self.session_token

            last_error = f"{endpoint}: status={response.status_code} code={data.get('code')} msg={data.get('msg')}"
            logger.info("fshare login failed %s", last_error)

        raise UpstreamUnavailable("fshare", LOGIN_FAILED, last_error)

    def ensure_session(self) -> str:
        with self._lock:
            if self.session_valid():
                return self.session_token
        return self.login()

    def _auth_post(self, path: str, payload: dict) -> dict:
        token = self.ensure_session()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
            "User-Agent": _API_UA,
        }
        try:
            response = self.network.post(f"{self.base_url}{path}", json_body=payload,
                                         headers=headers, timeout=self.timeout)
        except NetworkError as e:
            raise UpstreamUnavailable("fshare", API_FAILED, str(e))

        data = _json_or_none(response)
        if not data or data.get("code") != 200:
            msg = (data or {}).get("msg") or f"HTTP {response.status_code}"
            raise UpstreamUnavailable("fshare", API_FAILED, f"{path}: {msg}")
        return data

    # -- files -------------------------------------------------------

    def file_info(self, url: str) -> FshareFileInfo:
        self._require_configured()
        if not fshare_file_code(url):
            raise UpstreamUnavailable("fshare", API_FAILED, "invalid Fshare URL format")
        data = self._auth_post("/fileops/get", {"url": url, "dirOnly": 0})
        item = data.get("item") or {}
        return FshareFileInfo(
            name=item.get("name") or "fshare_file",
            size=int(item.get("size") or 0),
            link_type=item.get("linktype"),
        )

    def download_link(self, url: str, password: Optional[str] = None) -> FshareLink:
        self._require_configured()
        if not fshare_file_code(url):
            raise UpstreamUnavailable("fshare", API_FAILED, "invalid Fshare URL format")
        data = self._auth_post("/api/session/download", {
            "zipflag": 0,
            "url": url,
            "password": password or "",
            "token": self.session_token,
        })
        if not data.get("location"):
            raise UpstreamUnavailable("fshare", API_FAILED, "no download location in response")
        return FshareLink(
            url=data["location"],
            filename=data.get("name") or "fshare_file",
            size=int(data.get("size") or 0),
        )

    # -- quota -------------------------------------------------------

    def _roll_quota_day(self):
        today = date.today()
        if today != self._quota_day:
            self._quota_day = today
            self.daily_used = 0
            logger.info("fshare daily quota reset")

    def check_quota(self, size: int):
        with self._lock:
            self._roll_quota_day()
            remaining = self.daily_quota_bytes - self.daily_used
            if size > remaining:
                raise UpstreamUnavailable(
                    "fshare", QUOTA_EXCEEDED,
                    f"need {size / 1024 ** 3:.2f}GB, have {remaining / 1024 ** 3:.2f}GB",
                )

    def record_usage(self, size: int):
        with self._lock:
            self._roll_quota_day()
            self.daily_used += max(0, int(size))
            logger.info("fshare quota used %.2fGB", self.daily_used / 1024 ** 3)

    def quota_info(self) -> dict:
        if not self.is_configured:
            return {"enabled": False, "message": "Fshare service is not configured"}
        with self._lock:
            self._roll_quota_day()
            return {
                "enabled": True,
                "dailyLimit": self.daily_quota_bytes,
                "dailyUsed": self.daily_used,
                "dailyRemaining": self.daily_quota_bytes - self.daily_used,
                "percentUsed": self.daily_used / self.daily_quota_bytes * 100,
            }
