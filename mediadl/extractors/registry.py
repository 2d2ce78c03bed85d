from typing import Dict, Optional, Union

from mediadl.core.entities import Platform
from mediadl.sources.detector import is_facebook_photo
from .base import BaseExtractor
from .chain import ChainRun, ExtractionChain
from .result import ExtractionRequest


class FacebookRouter:
    """Picks the photo or the video chain by URL shape."""

    def __init__(self, video_chain: ExtractionChain, photo_chain: ExtractionChain):
        self.platform = Platform.FACEBOOK
        self.video_chain = video_chain
        self.photo_chain = photo_chain

    def chain_for_url(self, url: str) -> ExtractionChain:
        return self.photo_chain if is_facebook_photo(url) else self.video_chain

    def run(self, request: ExtractionRequest) -> ChainRun:
        return self.chain_for_url(request.url).run(request)


Runnable = Union[ExtractionChain, FacebookRouter]


class ExtractorRegistry:
    """
    Registry for per-platform extraction chains.
    """

    def __init__(self):
        self._chains: Dict[Platform, Runnable] = {}

    def register(self, platform: Platform, extractor: BaseExtractor):
        """Append a strategy to the platform's chain."""
        chain = self._chains.get(platform)
        if chain is None:
            chain = ExtractionChain(platform)
            self._chains[platform] = chain
        if not isinstance(chain, ExtractionChain):
            raise TypeError(f"{platform.value} is routed; register on its sub-chains")
        chain.append(extractor)

    def route(self, platform: Platform, router: FacebookRouter):
        self._chains[platform] = router

    def chain_for(self, platform: Platform) -> Optional[Runnable]:
        return self._chains.get(platform)

    def platforms(self):
        return list(self._chains.keys())
