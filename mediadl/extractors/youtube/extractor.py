from ..quality import LOWEST_COMMON_FORMAT
from ..tool import YtDlpVideoExtractor


class YouTubeExtractor(YtDlpVideoExtractor):
    """YouTube video via yt-dlp, falling back to the 360p mp4 and then to yt-dlp's own pick."""
    name = "youtube-ytdlp"
    title_fallback = "YouTube Video"
    probe_required = True
    retry_formats = (LOWEST_COMMON_FORMAT, None)
    quality_in_filename = True
