from dataclasses import dataclass
from typing import Optional


@dataclass
class TikTokMedia:
    """Direct media link returned by a TikTok download service."""
    url: str
    title: str = "TikTok Video"
    thumbnail: str = ""
    watermark_free: bool = True
    quality: str = "HD"
    sd_url: Optional[str] = None  # Standard-definition play URL, when offered
    music: Optional[str] = None
