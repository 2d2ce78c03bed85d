from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from pathlib import Path
import json


@dataclass
class HttpResponse:
    status_code: int
    text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass
class ProcessResult:
    stdout: str
    stderr: str
    returncode: int = 0
    elapsed: float = 0.0


class NetworkAdapter(ABC):
    """HTTP access used by scraping strategies. Every call is time-bounded."""

    @abstractmethod
    def request(self, method: str, url: str, params: Optional[Dict] = None, data: Any = None,
                json_body: Any = None, headers: Optional[Dict] = None,
                timeout: Optional[float] = None) -> HttpResponse:
        """Perform a request and return the decoded body. Raises NetworkError on transport failure."""
        pass

    @abstractmethod
    def download_to(self, url: str, dest: Path, headers: Optional[Dict] = None,
                    timeout: Optional[float] = None) -> int:
        """Stream a binary body to dest. Returns bytes written; raises on HTTP errors or HTML bodies."""
        pass

    def get(self, url: str, **kwargs) -> HttpResponse:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> HttpResponse:
        return self.request("POST", url, **kwargs)


class ProcessRunner(ABC):
    @abstractmethod
    def run(self, command: List[str], timeout: Optional[float] = None) -> ProcessResult:
        """Run command to completion, killing it when timeout elapses."""
        pass
