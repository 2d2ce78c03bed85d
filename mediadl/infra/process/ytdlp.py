import json
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Dict, List, Optional

from mediadl.core.interfaces import ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)


def resolve_binary(configured: Optional[str] = None) -> List[str]:
    """
    Locate yt-dlp: configured path, then the executable on PATH,
    then the installed module run through the current interpreter.
    """
    if configured:
        return [configured]
    found = shutil.which("yt-dlp")
    if found:
        return [found]
    return [sys.executable, "-m", "yt_dlp"]


class YtDlpTool:
    """Builds yt-dlp command lines and runs them through a ProcessRunner."""

    def __init__(self, runner: ProcessRunner, binary: Optional[List[str]] = None,
                 timeout: Optional[float] = None, probe_timeout: Optional[float] = None):
        self.runner = runner
        self.binary = list(binary) if binary else resolve_binary()
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    def _run(self, args: List[str], timeout: Optional[float] = None) -> ProcessResult:
        command = self.binary + args
        logger.debug("yt-dlp %s", " ".join(args))
        return self.runner.run(command, timeout=timeout or self.timeout)

    def probe(self, url: str, info_base: Path, extra_args: Optional[List[str]] = None) -> Dict:
        """
        Fetch metadata without downloading.

        Writes `<info_base>.info.json`, reads it and removes it. Returns the
        parsed info dict; raises ValueError if the sidecar is missing or unreadable.
        """
        args = [url, "--skip-download", "--write-info-json", "--no-playlist",
                "-o", str(info_base)] + list(extra_args or [])
        self._run(args, timeout=self.probe_timeout)

        info_path = Path(f"{info_base}.info.json")
        if not info_path.exists():
            raise ValueError(f"info file not written: {info_path.name}")
        try:
            with open(info_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"unreadable info file: {e}")
        finally:
            try:
                os.remove(info_path)
            except OSError:
                pass

    def download(self, url: str, output_path: Path, format_expr: Optional[str] = None,
                 extra_args: Optional[List[str]] = None) -> ProcessResult:
        args = [url, "-o", str(output_path), "--no-playlist"]
        if format_expr:
            args += ["-f", format_expr]
            if "+" in format_expr:
                args += ["--merge-output-format", "mp4"]
        args += list(extra_args or [])
        return self._run(args)

    def extract_audio(self, url: str, output_base: Path, bitrate: str) -> Path:
        """Extract an mp3 track at the given bitrate (kbps). Returns the produced path."""
        args = [url, "--no-playlist", "-x", "--audio-format", "mp3",
                "--audio-quality", f"{bitrate}K", "-o", f"{output_base}.%(ext)s"]
        self._run(args)
        return Path(f"{output_base}.mp3")

    def write_thumbnail(self, url: str, output_base: Path,
                        extra_args: Optional[List[str]] = None) -> Optional[Path]:
        """Save only the thumbnail. Returns the written image path, if any."""
        args = [url, "--write-thumbnail", "--skip-download", "--no-playlist",
                "-o", str(output_base)] + list(extra_args or [])
        self._run(args, timeout=self.probe_timeout)

        base = Path(output_base)
        for candidate in sorted(base.parent.glob(base.name + ".*")):
            if candidate.suffix.lower() in (".jpg", ".jpeg", ".png", ".webp"):
                return candidate
        return None
