"""
Platform locator normalization.

Each platform registers a normalizer in PLATFORM_NORMALIZERS with the hosts it
owns and a function that recognizes its known path shapes. Raw identifiers and
absolute URLs for the same item normalize to one canonical locator, so a
binding made from `https://youtube.com/watch?v=abc123` matches a later lookup
of `youtube:abc123`. Adding a platform is one more registration; no other
platform's logic is involved.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from provenance.core.errors import UnrecognizedFormat

URL_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
HOST_PREFIXES = ("www.", "m.", "mobile.")

# (host or None for a raw identifier, path segments, query) -> identifier or None
Extractor = Callable[[Optional[str], List[str], Dict[str, List[str]]], Optional[str]]


@dataclass(frozen=True)
class CanonicalLocator:
    """Platform-independent, comparable form of a platform locator."""
    platform: str
    locator: str

    def __str__(self) -> str:
        return f"{self.platform}:{self.locator}"


@dataclass(frozen=True)
class PlatformNormalizer:
    name: str
    hosts: Tuple[str, ...]
    id_pattern: "re.Pattern"
    extract: Extractor

    def owns_host(self, host: str) -> bool:
        return any(host == h or host.endswith("." + h) for h in self.hosts)


PLATFORM_NORMALIZERS: Dict[str, PlatformNormalizer] = {}
PLATFORM_ALIASES: Dict[str, str] = {}


def register_platform(name: str, hosts, id_pattern: str, aliases=()):
    """Decorator registering a path-shape extractor for a platform."""
    def decorator(func: Extractor) -> Extractor:
        PLATFORM_NORMALIZERS[name] = PlatformNormalizer(
            name=name,
            hosts=tuple(hosts),
            id_pattern=re.compile(rf"^(?:{id_pattern})$"),
            extract=func,
        )
        for alias in aliases:
            PLATFORM_ALIASES[alias] = name
        return func
    return decorator


def canonical_platform(platform: str) -> str:
    name = (platform or "").strip().lower()
    name = PLATFORM_ALIASES.get(name, name)
    if name not in PLATFORM_NORMALIZERS:
        raise UnrecognizedFormat(platform, "", "unknown platform")
    return name


def supported_platforms() -> List[str]:
    return sorted(PLATFORM_NORMALIZERS)


def _strip_host(host: str) -> str:
    host = host.lower().rstrip(".")
    for prefix in HOST_PREFIXES:
        if host.startswith(prefix):
            return host[len(prefix):]
    return host


def _looks_like_url(raw: str) -> bool:
    if URL_SCHEME_PATTERN.match(raw):
        return True
    first = raw.split("/", 1)[0].lower()
    return "." in first and any(
        normalizer.owns_host(_strip_host(first.split("?", 1)[0]))
        for normalizer in PLATFORM_NORMALIZERS.values()
    )


def _split_url(raw: str) -> Tuple[str, List[str], Dict[str, List[str]]]:
    if not URL_SCHEME_PATTERN.match(raw):
        raw = "https://" + raw
    parts = urlsplit(raw)
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ValueError("not an http(s) URL")
    segments = [s for s in parts.path.split("/") if s]
    return _strip_host(parts.hostname), segments, parse_qs(parts.query)


def normalize(platform: str, raw_locator: str) -> CanonicalLocator:
    """
    Normalize a raw identifier or absolute URL into a canonical locator.

    Raises:
        UnrecognizedFormat: unknown platform, empty input, a URL for another
            host, or an identifier that does not fit the platform
    """
    name = canonical_platform(platform)
    normalizer = PLATFORM_NORMALIZERS[name]
    raw = (raw_locator or "").strip()
    if not raw:
        raise UnrecognizedFormat(name, raw_locator or "", "empty locator")

    if _looks_like_url(raw):
        try:
            host, segments, query = _split_url(raw)
        except ValueError:
            raise UnrecognizedFormat(name, raw_locator, "malformed URL")
        if not normalizer.owns_host(host):
            raise UnrecognizedFormat(name, raw_locator, f"host {host} is not a {name} host")
    else:
        host, segments, query = None, [s for s in raw.split("/") if s], {}

    extracted = normalizer.extract(host, segments, query)
    if extracted is not None:
        if not normalizer.id_pattern.match(extracted):
            raise UnrecognizedFormat(name, raw_locator, "identifier does not fit platform format")
        return CanonicalLocator(platform=name, locator=extracted)

    # No known path shape: the whole path is the identifier, held to the raw-id
    # format. A query is never silently dropped
    candidate = "/".join(segments)
    if query:
        raise UnrecognizedFormat(name, raw_locator, "unrecognized URL shape with query parameters")
    if not candidate or not normalizer.id_pattern.match(candidate):
        raise UnrecognizedFormat(name, raw_locator, "no identifier found")
    return CanonicalLocator(platform=name, locator=candidate)


def detect_platform(url: str) -> Optional[str]:
    """Platform owning a URL's host, or None."""
    try:
        host, _, _ = _split_url(url.strip())
    except ValueError:
        return None
    for name, normalizer in PLATFORM_NORMALIZERS.items():
        if normalizer.owns_host(host):
            return name
    return None


def parse_platform_reference(reference: str) -> CanonicalLocator:
    """
    Parse a free-form platform reference: `platform:identifier` or a bare URL.

    Raises:
        UnrecognizedFormat: if the platform cannot be determined or normalized
    """
    text = (reference or "").strip()
    if _looks_like_url(text):
        name = detect_platform(text)
        if name is None:
            raise UnrecognizedFormat("", reference or "", "URL host is not a supported platform")
        return normalize(name, text)

    prefix, sep, rest = text.partition(":")
    if not sep:
        raise UnrecognizedFormat("", reference or "", "expected platform:identifier or a URL")
    return normalize(prefix, rest)


def _single_raw_id(host: Optional[str], segments: List[str]) -> Optional[str]:
    if host is None and len(segments) == 1:
        return segments[0]
    return None


def _segment_after(segments: List[str], markers) -> Optional[str]:
    for idx, segment in enumerate(segments[:-1]):
        if segment.lower() in markers:
            return segments[idx + 1]
    return None


@register_platform("youtube", hosts=("youtube.com", "youtu.be", "youtube-nocookie.com"),
                   id_pattern=r"@[A-Za-z0-9_.-]{1,100}|[A-Za-z0-9_-]{1,64}")
def _youtube(host, segments, query):
    if host == "youtu.be":
        return segments[0] if segments else None
    if host is not None and query.get("v"):
        return query["v"][0]
    if segments and segments[0].lower() in ("shorts", "embed", "v", "live") and len(segments) > 1:
        return segments[1]
    return _single_raw_id(host, segments)


@register_platform("tiktok", hosts=("tiktok.com",), id_pattern=r"[A-Za-z0-9_.-]{1,64}")
def _tiktok(host, segments, query):
    return _segment_after(segments, ("video", "photo")) or _single_raw_id(host, segments)


@register_platform("x", hosts=("x.com", "twitter.com"), id_pattern=r"\d{1,32}",
                   aliases=("twitter",))
def _x(host, segments, query):
    return _segment_after(segments, ("status", "statuses")) or _single_raw_id(host, segments)


@register_platform("instagram", hosts=("instagram.com",), id_pattern=r"[A-Za-z0-9_-]{1,64}")
def _instagram(host, segments, query):
    return _segment_after(segments, ("p", "reel", "reels", "tv")) or _single_raw_id(host, segments)


@register_platform("vimeo", hosts=("vimeo.com",), id_pattern=r"\d{1,20}")
def _vimeo(host, segments, query):
    numeric = [s for s in segments if s.isdigit()]
    if numeric:
        return numeric[-1]
    return _single_raw_id(host, segments)


@register_platform("github", hosts=("github.com",),
                   id_pattern=r"(gist/)?[A-Za-z0-9_.-]+(/[A-Za-z0-9_.~%@+\-]+)+")
def _github(host, segments, query):
    if host == "gist.github.com":
        return "gist/" + "/".join(segments) if segments else None
    if len(segments) >= 2:
        return "/".join(segments)
    return None


@register_platform("discord", hosts=("discord.com", "discord.gg", "discordapp.com"),
                   id_pattern=r"[A-Za-z0-9_-]+(/[A-Za-z0-9_-]+)*")
def _discord(host, segments, query):
    if host == "discord.gg" and segments:
        return "invite/" + segments[0]
    if segments:
        return "/".join(segments)
    return None


@register_platform("linkedin", hosts=("linkedin.com",), id_pattern=r"[A-Za-z0-9_:%.-]{1,200}")
def _linkedin(host, segments, query):
    if len(segments) >= 3 and segments[0] == "feed" and segments[1] == "update":
        return segments[2]
    return _segment_after(segments, ("posts",)) or _single_raw_id(host, segments)
