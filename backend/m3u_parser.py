"""
M3U Parser.

Turns raw M3U text into StreamEntry objects. Content parsing never raises:
unusable input comes back as a ParseResult with no items and an error
message, so callers can tell "empty playlist" from "not a playlist". The
file and URL variants raise PlaylistReadError / PlaylistFetchError when the
bytes could not be obtained at all.
"""
import dataclasses
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import aiofiles
import httpx

from errors import ParseError, PlaylistFetchError, PlaylistReadError

logger = logging.getLogger(__name__)

HEADER_MARKER = "#EXTM3U"
EXTINF_MARKER = "#EXTINF"
EXTGRP_MARKER = "#EXTGRP:"

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
DEFAULT_FETCH_TIMEOUT = 15.0

# key="value" pairs; keys may contain dashes (tvg-name, group-title)
_ATTRIBUTE_RE = re.compile(r'([A-Za-z0-9_-]+)="([^"]*)"')


class StreamType(str, Enum):
    CANAL = "CANAL"
    FILME = "FILME"
    SERIE = "SERIE"


@dataclass(frozen=True)
class StreamEntry:
    """One channel/movie/episode: an #EXTINF line plus its URL."""
    name: str
    url: str
    raw: str
    group_title: Optional[str] = None
    tvg_id: Optional[str] = None
    tvg_name: Optional[str] = None
    tvg_logo: Optional[str] = None
    duration: str = "-1"
    attributes: dict = field(default_factory=dict, compare=False, hash=False)
    stream_type: StreamType = StreamType.CANAL

    def with_stream_type(self, stream_type: StreamType) -> "StreamEntry":
        return dataclasses.replace(self, stream_type=StreamType(stream_type))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "raw": self.raw,
            "groupTitle": self.group_title,
            "tvg": {"id": self.tvg_id, "name": self.tvg_name, "logo": self.tvg_logo},
            "duration": self.duration,
            "attributes": dict(self.attributes),
            "streamType": self.stream_type.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StreamEntry":
        """Build an entry from its to_dict() form (or a looser API payload)."""
        tvg = data.get("tvg") or {}
        group = data.get("group") or {}
        stream_type = data.get("streamType") or StreamType.CANAL.value
        try:
            stream_type = StreamType(stream_type)
        except ValueError:
            stream_type = StreamType.CANAL
        return cls(
            name=data.get("name") or "",
            url=data.get("url") or "",
            raw=data.get("raw") or "",
            group_title=data.get("groupTitle") or group.get("title"),
            tvg_id=tvg.get("id"),
            tvg_name=tvg.get("name"),
            tvg_logo=tvg.get("logo"),
            duration=str(data.get("duration") or "-1"),
            attributes=dict(data.get("attributes") or {}),
            stream_type=stream_type,
        )


@dataclass
class ParseResult:
    """Outcome of parsing M3U content.

    error is None for valid content, including a valid playlist with no
    entries. skipped counts metadata lines without a URL and vice versa.
    """
    items: list[StreamEntry] = field(default_factory=list)
    error: Optional[str] = None
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_empty(self) -> bool:
        return not self.items

    def raise_for_error(self) -> "ParseResult":
        if self.error is not None:
            raise ParseError(self.error)
        return self

    def to_dict(self) -> dict:
        return {"items": [item.to_dict() for item in self.items]}


def split_extinf(line: str) -> tuple[str, str]:
    """
    Split an #EXTINF line into (attribute section, display name).

    The display name follows the last comma that is not inside a quoted
    attribute value.
    """
    body = line[len(EXTINF_MARKER):].lstrip(":")
    in_quotes = False
    split_at = -1
    for index, char in enumerate(body):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            split_at = index
    if split_at == -1:
        return body.strip(), ""
    return body[:split_at].strip(), body[split_at + 1:].strip()


def parse_extinf(line: str) -> dict:
    """Parse the metadata part of an #EXTINF line."""
    attribute_section, display_name = split_extinf(line)
    attributes = {key: value for key, value in _ATTRIBUTE_RE.findall(attribute_section)}
    duration_match = re.match(r"\s*(-?\d+(?:\.\d+)?)", attribute_section)
    return {
        "duration": duration_match.group(1) if duration_match else "-1",
        "attributes": attributes,
        "name": display_name,
    }


def _build_entry(extinf_line: str, url: str, extgrp: Optional[str]) -> StreamEntry:
    meta = parse_extinf(extinf_line)
    attributes = meta["attributes"]
    name = meta["name"] or attributes.get("tvg-name", "")
    return StreamEntry(
        name=name,
        url=url,
        raw=extinf_line,
        group_title=attributes.get("group-title") or extgrp,
        tvg_id=attributes.get("tvg-id"),
        tvg_name=attributes.get("tvg-name"),
        tvg_logo=attributes.get("tvg-logo"),
        duration=meta["duration"],
        attributes=attributes,
    )


def parse_m3u_content(content) -> ParseResult:
    """
    Parse raw M3U text.

    Requires the #EXTM3U header on the first non-blank line. Each #EXTINF
    line is paired with the next non-blank line that is not a directive.
    Never raises.
    """
    if not isinstance(content, str) or not content.strip():
        return ParseResult(error="M3U content is empty or not text")

    lines = [line.strip() for line in content.lstrip("\ufeff").splitlines()]
    lines = [line for line in lines if line]
    if not lines or not lines[0].upper().startswith(HEADER_MARKER):
        logger.debug("[PARSER] Content does not start with %s", HEADER_MARKER)
        return ParseResult(error="Content is not an M3U playlist (missing #EXTM3U header)")

    items: list[StreamEntry] = []
    skipped = 0
    pending_extinf: Optional[str] = None
    pending_group: Optional[str] = None

    for line in lines[1:]:
        if line.upper().startswith(EXTINF_MARKER):
            if pending_extinf is not None:
                skipped += 1
            pending_extinf = line
            pending_group = None
        elif line.upper().startswith(EXTGRP_MARKER):
            pending_group = line[len(EXTGRP_MARKER):].strip() or None
        elif line.startswith("#"):
            continue
        elif pending_extinf is None:
            skipped += 1
        else:
            items.append(_build_entry(pending_extinf, line, pending_group))
            pending_extinf = None
            pending_group = None

    if pending_extinf is not None:
        skipped += 1

    if skipped:
        logger.debug("[PARSER] Skipped %d unpaired lines", skipped)
    return ParseResult(items=items, skipped=skipped)


async def parse_m3u_from_url(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> ParseResult:
    """Fetch a playlist over HTTP and parse it."""
    logger.info("[PARSER] Fetching playlist from %s", url)
    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": BROWSER_USER_AGENT},
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            content = response.text
    except httpx.HTTPStatusError as e:
        raise PlaylistFetchError(url, f"HTTP {e.response.status_code}") from e
    except httpx.TimeoutException as e:
        raise PlaylistFetchError(url, f"timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        raise PlaylistFetchError(url, str(e) or e.__class__.__name__) from e
    return parse_m3u_content(content)


async def parse_m3u_from_file(file_path) -> ParseResult:
    """Read a playlist file (resolved to an absolute path) and parse it."""
    absolute_path = Path(file_path).resolve()
    logger.debug("[PARSER] Reading playlist file %s", absolute_path)
    try:
        async with aiofiles.open(absolute_path, "r", encoding="utf-8", errors="replace") as f:
            content = await f.read()
    except FileNotFoundError as e:
        raise PlaylistReadError(str(absolute_path), "file not found") from e
    except OSError as e:
        raise PlaylistReadError(str(absolute_path), e.strerror or str(e)) from e
    return parse_m3u_content(content)
