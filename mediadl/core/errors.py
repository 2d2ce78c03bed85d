from typing import List, Optional


class MediaDLError(Exception):
    """Base class for every error raised by the fetch core."""
    code = "MEDIADL_ERROR"


class UnsupportedPlatform(MediaDLError):
    code = "UNSUPPORTED_PLATFORM"

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            "Unsupported platform. Supported: YouTube, TikTok, Instagram, Facebook, Twitter and Fshare."
        )


class ExtractionExhausted(MediaDLError):
    code = "EXTRACTION_EXHAUSTED"

    def __init__(self, platform: str, url: str, attempts: Optional[list] = None):
        self.platform = platform
        self.url = url
        self.attempts: List = list(attempts or [])
        tried = ", ".join(a.strategy for a in self.attempts) or "none"
        super().__init__(f"Failed to download from {platform}: all strategies failed ({tried})")


class UpstreamTimeout(MediaDLError):
    code = "UPSTREAM_TIMEOUT"

    def __init__(self, strategy: str, timeout: float):
        self.strategy = strategy
        self.timeout = timeout
        super().__init__(f"{strategy} timed out after {timeout:g}s")


class UpstreamUnavailable(MediaDLError):
    code = "UPSTREAM_UNAVAILABLE"

    def __init__(self, service: str, reason_code: str, detail: str = ""):
        self.service = service
        self.reason_code = reason_code
        self.detail = detail
        message = f"{service} unavailable ({reason_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NoContentFound(MediaDLError):
    code = "NO_CONTENT_FOUND"

    def __init__(self, strategy: str, message: str = "No usable media found"):
        self.strategy = strategy
        super().__init__(f"{strategy}: {message}")


class QuotaExceeded(MediaDLError):
    code = "QUOTA_EXCEEDED"

    def __init__(self, identity: str, limit: int, usage: int, candidate: int):
        self.identity = identity
        self.limit = limit
        self.usage = usage
        self.candidate = candidate
        super().__init__(
            f"Storage quota exceeded for {identity}: "
            f"{usage} + {candidate} bytes > limit {limit} bytes"
        )


class ArtifactNotFound(MediaDLError):
    code = "ARTIFACT_NOT_FOUND"

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(f"Download not found or access denied: {artifact_id}")


class ProcessTimeout(UpstreamTimeout):
    code = "PROCESS_TIMEOUT"

    def __init__(self, command: str, timeout: float):
        self.command = command
        super().__init__(command, timeout)


class ProcessFailed(MediaDLError):
    code = "PROCESS_FAILED"

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr output"
        super().__init__(f"{command} exited with code {returncode}: {tail}")
