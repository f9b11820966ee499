import pytest

from provenance.core.errors import UnrecognizedFormat
from provenance.services.platforms import (
    CanonicalLocator, normalize, parse_platform_reference, supported_platforms
)


@pytest.mark.parametrize("platform,raw,expected", [
    ("youtube", "abc123", "abc123"),
    ("youtube", "https://www.youtube.com/watch?v=abc123&t=10s", "abc123"),
    ("youtube", "https://youtu.be/abc123?si=share", "abc123"),
    ("youtube", "youtube.com/shorts/abc123", "abc123"),
    ("youtube", "https://m.youtube.com/embed/abc123#frag", "abc123"),
    ("youtube", "https://www.youtube.com/@channel", "@channel"),
    ("tiktok", "https://www.tiktok.com/@artist/video/7234567890123", "7234567890123"),
    ("tiktok", "7234567890123", "7234567890123"),
    ("x", "https://twitter.com/artist/status/1234567890", "1234567890"),
    ("x", "https://x.com/artist/status/1234567890?s=20", "1234567890"),
    ("twitter", "1234567890", "1234567890"),
    ("instagram", "https://www.instagram.com/p/Cabc_12-/", "Cabc_12-"),
    ("instagram", "https://instagram.com/reel/Cxyz", "Cxyz"),
    ("vimeo", "https://vimeo.com/123456", "123456"),
    ("vimeo", "https://player.vimeo.com/video/123456", "123456"),
    ("github", "https://github.com/owner/repo", "owner/repo"),
    ("github", "https://github.com/owner/repo/blob/main/README.md", "owner/repo/blob/main/README.md"),
    ("github", "https://gist.github.com/owner/abcdef", "gist/owner/abcdef"),
    ("discord", "https://discord.com/channels/1/2/3", "channels/1/2/3"),
    ("linkedin", "https://www.linkedin.com/feed/update/urn:li:activity:123/", "urn:li:activity:123"),
])
def test_normalize(platform, raw, expected):
    assert normalize(platform, raw).locator == expected


def test_url_and_raw_id_normalize_identically():
    assert normalize("youtube", "https://youtube.com/watch?v=abc123") == normalize("youtube", "abc123")


def test_channel_handle_url_and_raw_handle_match():
    assert normalize("youtube", "https://youtube.com/@chan") == normalize("youtube", "@chan")


def test_urls_differing_only_in_query_never_collapse():
    first = "https://www.youtube.com/playlist?list=PLaaaa"
    second = "https://www.youtube.com/playlist?list=PLbbbb"
    for url in (first, second):
        with pytest.raises(UnrecognizedFormat):
            normalize("youtube", url)


def test_alias_maps_to_canonical_platform():
    assert normalize("Twitter", "1234567890").platform == "x"


def test_canonical_locator_string_form():
    assert str(CanonicalLocator(platform="youtube", locator="abc123")) == "youtube:abc123"


@pytest.mark.parametrize("platform,raw", [
    ("youtube", ""),
    ("youtube", "   "),
    ("youtube", "abc 123"),
    ("youtube", "https://vimeo.com/123456"),
    ("youtube", "https://www.youtube.com/"),
    ("youtube", "ftp://youtube.com/watch?v=abc123"),
    ("x", "https://x.com/artist/status/not-a-number"),
    ("youtube", "https://www.youtube.com/playlist?list=PLaaaa"),
    ("youtube", "https://www.youtube.com/channel/UC123/videos"),
    ("tiktok", "https://www.tiktok.com/@artist"),
    ("myspace", "abc123"),
])
def test_unrecognized_locators(platform, raw):
    with pytest.raises(UnrecognizedFormat):
        normalize(platform, raw)


@pytest.mark.parametrize("reference,expected", [
    ("youtube:abc123", "youtube:abc123"),
    ("twitter:1234567890", "x:1234567890"),
    ("https://youtu.be/abc123", "youtube:abc123"),
    ("https://www.tiktok.com/@artist/video/42", "tiktok:42"),
    ("linkedin:urn:li:activity:123", "linkedin:urn:li:activity:123"),
])
def test_parse_platform_reference(reference, expected):
    assert str(parse_platform_reference(reference)) == expected


@pytest.mark.parametrize("reference", ["https://example.com/video/1", "abc123", ""])
def test_parse_platform_reference_rejects(reference):
    with pytest.raises(UnrecognizedFormat):
        parse_platform_reference(reference)


def test_supported_platforms():
    assert {"youtube", "tiktok", "x", "instagram", "vimeo", "github", "discord", "linkedin"} <= set(
        supported_platforms()
    )
