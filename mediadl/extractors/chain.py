import logging
import time
from dataclasses import dataclass, field
from typing import List, Sequence

from mediadl.core.entities import AttemptOutcome, ExtractionAttempt, Platform
from mediadl.core.errors import ExtractionExhausted, NoContentFound, UpstreamTimeout
from .base import BaseExtractor
from .result import ExtractionRequest, ExtractResult

logger = logging.getLogger(__name__)


@dataclass
class ChainRun:
    result: ExtractResult
    attempts: List[ExtractionAttempt] = field(default_factory=list)


def _outcome_for(exc: Exception) -> AttemptOutcome:
    if isinstance(exc, UpstreamTimeout):
        return AttemptOutcome.TIMEOUT
    if isinstance(exc, NoContentFound):
        return AttemptOutcome.NO_CONTENT
    return AttemptOutcome.UPSTREAM_ERROR


class ExtractionChain:
    """
    Ordered list of strategies for one platform.

    Strategies run strictly one after another; the first to return a
    result wins. A failing strategy is recorded and the next one runs.
    Nothing is retried in place.
    """

    def __init__(self, platform: Platform, extractors: Sequence[BaseExtractor] = ()):
        self.platform = platform
        self.extractors: List[BaseExtractor] = list(extractors)

    def append(self, extractor: BaseExtractor):
        self.extractors.append(extractor)

    @property
    def strategy_names(self) -> List[str]:
        return [e.name for e in self.extractors]

    def run(self, request: ExtractionRequest) -> ChainRun:
        attempts: List[ExtractionAttempt] = []
        request.attempts = attempts
        for extractor in self.extractors:
            started = time.monotonic()
            try:
                result = extractor.attempt(request)
            except Exception as e:
                elapsed = time.monotonic() - started
                outcome = _outcome_for(e)
                attempts.append(ExtractionAttempt(
                    extractor.name, elapsed, outcome, str(e), getattr(e, "reason_code", None) or "",
                ))
                logger.warning("strategy=%s outcome=%s elapsed=%.2fs url=%s error=%s",
                               extractor.name, outcome.value, elapsed, request.url, e)
                continue

            elapsed = time.monotonic() - started
            result.strategy = extractor.name
            attempts.append(ExtractionAttempt(extractor.name, elapsed, AttemptOutcome.SUCCESS))
            logger.info("strategy=%s outcome=success elapsed=%.2fs url=%s",
                        extractor.name, elapsed, request.url)
            return ChainRun(result=result, attempts=attempts)

        raise ExtractionExhausted(self.platform.display_name, request.url, attempts)
