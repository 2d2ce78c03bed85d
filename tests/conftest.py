import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from mediadl.core.errors import ProcessFailed, ProcessTimeout
from mediadl.core.interfaces import HttpResponse, NetworkAdapter, ProcessResult, ProcessRunner
from mediadl.core.workspace import TempArea
from mediadl.infra.network.http import ServerError
from mediadl.infra.persistence.json_store import JsonArtifactRepository
from mediadl.infra.process.ytdlp import YtDlpTool


class FakeNetwork(NetworkAdapter):
    """
    Scripted HTTP. `responses` maps "METHOD url" or plain url to an
    HttpResponse, an exception instance, or a list consumed in order.
    `bodies` maps download URLs to bytes.
    """

    def __init__(self, responses: Optional[Dict] = None, bodies: Optional[Dict[str, bytes]] = None):
        self.responses = dict(responses or {})
        self.bodies = dict(bodies or {})
        self.calls: List[dict] = []
        self.downloads: List[str] = []

    def request(self, method, url, params=None, data=None, json_body=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "data": data,
                           "json": json_body, "headers": headers or {}})
        key = f"{method} {url}"
        entry = self.responses.get(key, self.responses.get(url))
        if isinstance(entry, list):
            entry = entry.pop(0) if entry else None
        if entry is None:
            raise ServerError(404, f"no scripted response for {key}")
        if isinstance(entry, Exception):
            raise entry
        return entry

    def download_to(self, url, dest, headers=None, timeout=None):
        self.downloads.append(url)
        body = self.bodies.get(url)
        if body is None:
            raise ServerError(404, f"no scripted body for {url}")
        if isinstance(body, Exception):
            raise body
        Path(dest).write_bytes(body)
        return len(body)


def json_response(payload, status_code: int = 200) -> HttpResponse:
    return HttpResponse(status_code=status_code, text=json.dumps(payload),
                        headers={"Content-Type": "application/json"})


def html_response(text: str, status_code: int = 200) -> HttpResponse:
    return HttpResponse(status_code=status_code, text=text, headers={"Content-Type": "text/html"})


def _arg_after(command: List[str], flag: str) -> Optional[str]:
    if flag in command:
        return command[command.index(flag) + 1]
    return None


class FakeRunner(ProcessRunner):
    """
    Stands in for the yt-dlp binary: writes the files a real run would
    produce, fails the formats listed in `fail_formats`, and raises
    ProcessTimeout for every call once `timeout_all` is set.
    """

    def __init__(self, info: Optional[dict] = None, payload: bytes = b"x" * 2048,
                 fail_formats=(), fail_probe: bool = False, fail_audio: bool = False,
                 timeout_all: bool = False, thumbnail: bool = True):
        self.info = info if info is not None else {"title": "Sample Video", "formats": []}
        self.payload = payload
        self.fail_formats = set(fail_formats)
        self.fail_probe = fail_probe
        self.fail_audio = fail_audio
        self.timeout_all = timeout_all
        self.thumbnail = thumbnail
        self.commands: List[List[str]] = []

    @property
    def downloads(self) -> List[List[str]]:
        return [c for c in self.commands
                if "--write-info-json" not in c and "-x" not in c and "--write-thumbnail" not in c]

    def run(self, command, timeout=None):
        self.commands.append(list(command))
        if self.timeout_all:
            raise ProcessTimeout("yt-dlp", timeout or 180)
        output = _arg_after(command, "-o")

        if "--write-info-json" in command:
            if self.fail_probe:
                raise ProcessFailed("yt-dlp", 1, "ERROR: Unsupported URL")
            Path(f"{output}.info.json").write_text(json.dumps(self.info), encoding="utf-8")
        elif "-x" in command:
            if self.fail_audio:
                raise ProcessFailed("yt-dlp", 1, "ERROR: ffmpeg not found")
            Path(output.replace("%(ext)s", "mp3")).write_bytes(b"a" * 512)
        elif "--write-thumbnail" in command:
            if self.thumbnail:
                Path(f"{output}.jpg").write_bytes(b"\xff\xd8" + b"i" * 256)
        else:
            fmt = _arg_after(command, "-f")
            if fmt in self.fail_formats:
                raise ProcessFailed("yt-dlp", 1, f"ERROR: requested format {fmt} not available")
            Path(output).write_bytes(self.payload)
        return ProcessResult(stdout="", stderr="", returncode=0)


@pytest.fixture
def temp_area(tmp_path):
    return TempArea(tmp_path / "temp")


@pytest.fixture
def repo(temp_area):
    return JsonArtifactRepository(temp_area, max_history_per_identity=100)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def ytdlp(fake_runner):
    return YtDlpTool(fake_runner, binary=["yt-dlp"])


@pytest.fixture
def network():
    return FakeNetwork()
