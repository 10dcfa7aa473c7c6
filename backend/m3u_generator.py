"""
M3U Generator.

Renders stream entries back into M3U text, replacing each original stream
URL with the server's restream URL.
"""
import re
from typing import Iterable, Union

from m3u_parser import EXTINF_MARKER, HEADER_MARKER, StreamEntry

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9_.-]")
_TVG_NAME_RE = re.compile(r'tvg-name="([^"]+)"')
_DISPLAY_NAME_RE = re.compile(r",(.*)$")


def sanitize_stream_name(name: str) -> str:
    """Replace everything outside [A-Za-z0-9_.-] with an underscore."""
    return _UNSAFE_CHARS_RE.sub("_", name)


def restream_name(info_line: str) -> str:
    """tvg-name if present, else the trailing display label, else 'Unknown'."""
    tvg_name = _TVG_NAME_RE.search(info_line)
    if tvg_name:
        return tvg_name.group(1)
    display_name = _DISPLAY_NAME_RE.search(info_line)
    if display_name:
        return display_name.group(1).strip()
    return "Unknown"


def build_restream_url(server_base_url: str, info_line: str) -> str:
    return f"{server_base_url.rstrip('/')}/live/{sanitize_stream_name(restream_name(info_line))}"


def _raw_and_url(item: Union[StreamEntry, dict]) -> tuple[str, str]:
    if isinstance(item, StreamEntry):
        return item.raw or "", item.url or ""
    return item.get("raw") or "", item.get("url") or ""


def generate_m3u(items: Iterable[Union[StreamEntry, dict]], server_base_url: str) -> str:
    """
    Build client-facing M3U text.

    Items without an #EXTINF metadata line or without a URL are skipped.
    """
    lines = [HEADER_MARKER]
    for item in items:
        raw, url = _raw_and_url(item)
        info = raw.split("\n")[0]
        if not info.upper().startswith(EXTINF_MARKER) or not url:
            continue
        lines.append(info)
        lines.append(build_restream_url(server_base_url, info))
    return "\n".join(lines) + "\n"
