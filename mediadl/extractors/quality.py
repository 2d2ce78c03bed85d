import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

CANONICAL_LADDER = ("1080p", "720p", "480p", "360p", "240p")

# yt-dlp's 360p mp4 itag; present on nearly every YouTube video
LOWEST_COMMON_FORMAT = "18"

HIGHEST_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/bestvideo+bestaudio/best[ext=mp4]/best"
DEFAULT_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"

BEST_AVAILABLE = "Best Available"

# Reported when a source advertises none of the canonical heights
HIGHEST_ONLY = ("highest",)

_HEIGHT_RE = re.compile(r"^([0-9]{3,4})p$")


@dataclass(frozen=True)
class QualityRequest:
    kind: str  # "default", "highest" or "height"
    height: Optional[int] = None

    @property
    def label(self) -> str:
        return f"{self.height}p" if self.kind == "height" else self.kind


def parse_quality(token: Optional[str]) -> QualityRequest:
    """Anything other than 'highest' or an '<n>p' token falls back to default."""
    value = (token or "").strip().lower()
    if value == "highest":
        return QualityRequest("highest")
    match = _HEIGHT_RE.match(value)
    if match:
        return QualityRequest("height", int(match.group(1)))
    return QualityRequest("default")


def _near_floor(height: int) -> int:
    return max(360, height - 240)


def resolve_format(token: Optional[str]) -> str:
    """
    Translate a quality token into a yt-dlp format expression.

    For a height H the selectors are tried left to right:
    exact H with best audio, the nearest stream within 240p below H
    (never under 360p, mp4 first), the tallest stream below H in any
    container, then single-file streams in the same order, and finally the absolute
    fallbacks, which only apply when no stream at or below H exists.
    """
    request = parse_quality(token)
    if request.kind == "highest":
        return HIGHEST_FORMAT
    if request.kind == "default":
        return DEFAULT_FORMAT

    h = request.height
    floor = _near_floor(h)
    return "/".join([
        f"bestvideo[height={h}][ext=mp4]+bestaudio[ext=m4a]/bestvideo[height={h}]+bestaudio",
        f"bestvideo[height<={h}][height>={floor}][ext=mp4]+bestaudio[ext=m4a]",
        f"bestvideo[height<={h}][height>={floor}]+bestaudio",
        f"bestvideo[height<={h}]+bestaudio",
        f"best[height={h}][ext=mp4]",
        f"best[height<={h}][height>={floor}][ext=mp4]",
        f"best[height<={h}]",
        "bestvideo[ext=mp4]+bestaudio[ext=m4a]",
        "best[ext=mp4]",
        "best",
    ])


def select_quality(token: Optional[str], heights: Iterable[int]) -> str:
    """
    Pick the height the format ladder would land on, given the heights a
    source advertises. Returns a label like '720p', or 'Best Available'
    when nothing is advertised.
    """
    advertised = sorted({int(h) for h in heights if h}, reverse=True)
    request = parse_quality(token)
    if not advertised:
        return request.label if request.kind == "height" else BEST_AVAILABLE

    if request.kind != "height":
        return f"{advertised[0]}p"

    h = request.height
    if h in advertised:
        return f"{h}p"
    near = [x for x in advertised if _near_floor(h) <= x <= h]
    if near:
        return f"{near[0]}p"
    below = [x for x in advertised if x <= h]
    if below:
        return f"{below[0]}p"
    # Only taken when nothing at or below the request exists
    return f"{advertised[0]}p"


def format_heights(formats: Optional[List[dict]]) -> List[int]:
    heights = []
    for fmt in formats or []:
        height = fmt.get("height") if isinstance(fmt, dict) else None
        if isinstance(height, (int, float)) and height > 0:
            heights.append(int(height))
    return heights


def available_qualities(formats: Optional[List[dict]]) -> List[str]:
    """Canonical ladder entries the source advertises, highest first."""
    heights = set(format_heights(formats))
    found = [q for q in CANONICAL_LADDER if int(q[:-1]) in heights]
    found.sort(key=lambda q: int(q[:-1]), reverse=True)
    return found or list(HIGHEST_ONLY)
