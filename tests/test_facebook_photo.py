import pytest

from conftest import FakeNetwork, FakeRunner, html_response

from mediadl.core.entities import ArtifactKind, Platform
from mediadl.core.errors import NoContentFound
from mediadl.extractors.chain import ExtractionChain
from mediadl.extractors.facebook import photos
from mediadl.extractors.facebook.extractor import (
    FacebookCdnPhotoExtractor, FacebookOgImageExtractor, FacebookPageScrapeExtractor,
    FacebookPhotoInstructionsExtractor, FacebookThumbnailExtractor,
)
from mediadl.extractors.result import ExtractionRequest
from mediadl.infra.process.ytdlp import YtDlpTool


PHOTO_URL = "https://www.facebook.com/photo?fbid=123456789012345&set=a.1"


@pytest.mark.parametrize("url,expected", [
    ("https://www.facebook.com/photo?fbid=42", "42"),
    ("https://www.facebook.com/page/photos/a.99/777/", "777"),
    ("https://www.facebook.com/photo/555", "555"),
    ("https://www.facebook.com/photo.php?photo_id=31", "31"),
    ("https://www.facebook.com/story/123456789012345678", "123456789012345678"),
    ("https://www.facebook.com/somepage", None),
])
def test_photo_id_shapes(url, expected) -> None:
    assert photos.photo_id(url) == expected


def test_cdn_candidates_cover_every_template() -> None:
    candidates = photos.cdn_candidates("42")

    assert len(candidates) == 12
    assert all("42_" in c for c in candidates)


def test_scrape_skips_thumbnails_and_profiles_and_picks_largest() -> None:
    html = (
        '<img src="https:\\/\\/scontent.xx.fbcdn.net\\/v\\/p_s.jpg" width="50">'
        '<img src="https://scontent.xx.fbcdn.net/profile/pic.jpg" height="10">'
        '"https://scontent.xx.fbcdn.net/v/photo.jpg?w=720&amp;x=1"'
        '"https://scontent.xx.fbcdn.net/v/photo.jpg?w=2048"'
    )
    urls = photos.scrape_image_urls(html)

    assert "https://scontent.xx.fbcdn.net/v/p_s.jpg" not in urls
    assert all("profile" not in u for u in urls)
    assert photos.pick_best_image(urls) == "https://scontent.xx.fbcdn.net/v/photo.jpg?w=2048"


def test_og_image() -> None:
    html = '<html><head><meta property="og:image" content="https://cdn/x.jpg?a=1&amp;b=2"></head></html>'

    assert photos.og_image(html) == "https://cdn/x.jpg?a=1&b=2"
    assert photos.og_image("<html></html>") is None


def test_cdn_strategy_tries_templates_until_one_answers(temp_area) -> None:
    hit = photos.cdn_candidates("123456789012345")[3]
    network = FakeNetwork(bodies={hit: b"\xff\xd8jpeg"})

    result = FacebookCdnPhotoExtractor(temp_area, network).attempt(ExtractionRequest(PHOTO_URL))

    assert result.kind == ArtifactKind.IMAGE
    assert result.filename == "Facebook_Photo.jpg"
    assert network.downloads[-1] == hit
    assert len(network.downloads) == 4


def test_cdn_strategy_without_id_is_no_content(temp_area) -> None:
    with pytest.raises(NoContentFound):
        FacebookCdnPhotoExtractor(temp_area, FakeNetwork()).attempt(
            ExtractionRequest("https://www.facebook.com/photos/"))


def test_og_image_strategy_uses_crawler_user_agent(temp_area) -> None:
    page = '<meta property="og:image" content="https://scontent.xx.fbcdn.net/og.png">'
    network = FakeNetwork(
        responses={PHOTO_URL: html_response(page)},
        bodies={"https://scontent.xx.fbcdn.net/og.png": b"png"},
    )

    result = FacebookOgImageExtractor(temp_area, network).attempt(ExtractionRequest(PHOTO_URL))

    assert "facebookexternalhit" in network.calls[0]["headers"]["User-Agent"]
    assert result.filename == "Facebook_Photo.png"


def test_photo_chain_degrades_to_instructions(temp_area) -> None:
    network = FakeNetwork(responses={PHOTO_URL: html_response("<html>login required</html>")})
    ytdlp = YtDlpTool(FakeRunner(thumbnail=False), binary=["yt-dlp"])
    chain = ExtractionChain(Platform.FACEBOOK, [
        FacebookCdnPhotoExtractor(temp_area, network),
        FacebookPageScrapeExtractor(temp_area, network),
        FacebookThumbnailExtractor(temp_area, ytdlp),
        FacebookOgImageExtractor(temp_area, network),
        FacebookPhotoInstructionsExtractor(temp_area),
    ])

    run = chain.run(ExtractionRequest(PHOTO_URL))

    assert run.result.kind == ArtifactKind.INSTRUCTIONS
    assert run.result.strategy == "facebook-photo-instructions"
    assert PHOTO_URL in run.result.instructions
    assert len(run.attempts) == 5
    assert list(temp_area.files()) == []


def test_thumbnail_strategy(temp_area) -> None:
    ytdlp = YtDlpTool(FakeRunner(), binary=["yt-dlp"])

    result = FacebookThumbnailExtractor(temp_area, ytdlp).attempt(ExtractionRequest(PHOTO_URL))

    assert result.kind == ArtifactKind.IMAGE
    assert temp_area.exists(result.primary.path)
