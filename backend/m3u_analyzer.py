"""
Dedup/Analyze engine.

Partitions parsed M3U entries into new and duplicate against the master
catalog and guesses each entry's content type. Read-only: the caller decides
what to persist.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.orm import Session

from m3u_parser import StreamEntry, StreamType, parse_m3u_content
from models import MASTER_PLAYLIST_NAME, Playlist, Stream

logger = logging.getLogger(__name__)

MOVIE_KEYWORDS = ("FILME", "MOVIE")
SERIES_KEYWORDS = ("SERIE",)  # also matches SERIES


def guess_stream_type(group_title: Optional[str]) -> StreamType:
    """Best-effort content type from a group/category label."""
    if not group_title:
        return StreamType.CANAL
    title = group_title.upper()
    if any(keyword in title for keyword in MOVIE_KEYWORDS):
        return StreamType.FILME
    if any(keyword in title for keyword in SERIES_KEYWORDS):
        return StreamType.SERIE
    return StreamType.CANAL


def normalize_stream_url(url: str) -> str:
    """
    Canonical form of a stream URL: lowercase scheme and host, no trailing
    slash on the path, query parameters sorted. Only used when analysis is
    asked for normalized matching.
    """
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/") if parts.path != "/" else ""
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, parts.fragment))


@dataclass
class AnalysisResult:
    new_items: list[StreamEntry] = field(default_factory=list)
    duplicate_items: list[StreamEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "newItems": [item.to_dict() for item in self.new_items],
            "duplicateItems": [item.to_dict() for item in self.duplicate_items],
        }


def get_master_playlist(session: Session) -> Optional[Playlist]:
    return session.query(Playlist).filter(Playlist.name == MASTER_PLAYLIST_NAME).first()


def load_master_urls(session: Session, master: Playlist) -> set[str]:
    rows = session.query(Stream.stream_url).filter(Stream.playlist_id == master.id).all()
    return {row[0] for row in rows}


def partition_items(
    items: Iterable[StreamEntry],
    known_urls: set[str],
    normalize_urls: bool = False,
) -> AnalysisResult:
    """Split items by URL membership in known_urls, tagging each with a type guess."""
    key = normalize_stream_url if normalize_urls else (lambda url: url)
    known = {key(url) for url in known_urls} if normalize_urls else known_urls

    result = AnalysisResult()
    for item in items:
        enhanced = item.with_stream_type(guess_stream_type(item.group_title))
        if key(item.url) in known:
            result.duplicate_items.append(enhanced)
        else:
            result.new_items.append(enhanced)
    return result


def analyze_m3u_string(session: Session, content: str, normalize_urls: bool = False) -> AnalysisResult:
    """Parse content and partition it against the master catalog."""
    parsed = parse_m3u_content(content)
    if parsed.is_empty:
        if parsed.error:
            logger.info(f"[ANALYZE] Nothing to analyze: {parsed.error}")
        return AnalysisResult()

    master = get_master_playlist(session)
    if master is None:
        logger.warning("[ANALYZE] Master playlist not found, treating all items as new")
        return partition_items(parsed.items, set())

    result = partition_items(parsed.items, load_master_urls(session, master), normalize_urls)
    logger.info(
        f"[ANALYZE] {len(parsed.items)} items: {len(result.new_items)} new, "
        f"{len(result.duplicate_items)} duplicates"
    )
    return result
