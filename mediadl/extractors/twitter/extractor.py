from typing import Optional

from ..quality import parse_quality
from ..tool import YtDlpVideoExtractor


class TwitterExtractor(YtDlpVideoExtractor):
    """Twitter/X video via yt-dlp."""
    name = "twitter-ytdlp"
    title_fallback = "Twitter Post"
    watermark_free = False

    def format_for(self, quality: str) -> Optional[str]:
        request = parse_quality(quality)
        if request.kind != "height":
            return None
        # Exact height first, then the closest one below
        return f"best[height={request.height}]/best[height<={request.height}]"
