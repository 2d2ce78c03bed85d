import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests

from mediadl.core.errors import UpstreamTimeout
from mediadl.core.interfaces import HttpResponse, NetworkAdapter

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _host(url: str) -> str:
    return urlparse(url).hostname or url


class NetworkError(Exception):
    pass


class ServerError(NetworkError):
    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code}")


class HttpNetworkAdapter(NetworkAdapter):
    def __init__(self, timeout: float = 15.0, download_timeout: float = 30.0,
                 user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.download_timeout = download_timeout
        self.user_agent = user_agent

    def _headers(self, headers: Optional[Dict]) -> Dict[str, str]:
        final_headers = {"User-Agent": self.user_agent}
        if headers:
            for k, v in headers.items():
                # Host and Content-Length are set by the library
                if k.lower() in ("host", "content-length"):
                    continue
                final_headers[k] = v
        return final_headers

    def request(self, method: str, url: str, params: Optional[Dict] = None, data: Any = None,
                json_body: Any = None, headers: Optional[Dict] = None,
                timeout: Optional[float] = None) -> HttpResponse:
        try:
            resp = requests.request(
                method.upper(),
                url,
                params=params,
                data=data,
                json=json_body,
                headers=self._headers(headers),
                timeout=timeout or self.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout:
            raise UpstreamTimeout(_host(url), timeout or self.timeout)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Connection failed: {e}")

        logger.debug("%s %s -> %s", method.upper(), url, resp.status_code)
        return HttpResponse(
            status_code=resp.status_code,
            text=resp.text,
            headers=dict(resp.headers),
            url=resp.url,
        )

    def download_to(self, url: str, dest: Path, headers: Optional[Dict] = None,
                    timeout: Optional[float] = None) -> int:
        dest = Path(dest)
        written = 0
        try:
            with requests.get(url, headers=self._headers(headers), stream=True,
                              timeout=timeout or self.download_timeout) as resp:
                if resp.status_code != 200:
                    raise ServerError(resp.status_code)

                content_type = resp.headers.get("Content-Type", "").lower()
                if "text/html" in content_type:
                    raise NetworkError("Server returned HTML instead of binary")

                with open(dest, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=64 * 1024):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
        except requests.exceptions.Timeout:
            self._discard(dest)
            raise UpstreamTimeout(_host(url), timeout or self.download_timeout)
        except requests.exceptions.RequestException as e:
            self._discard(dest)
            raise NetworkError(f"Connection failed: {e}")
        except NetworkError:
            self._discard(dest)
            raise

        if written == 0:
            self._discard(dest)
            raise NetworkError("Downloaded file is empty")
        return written

    @staticmethod
    def _discard(path: Path):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
