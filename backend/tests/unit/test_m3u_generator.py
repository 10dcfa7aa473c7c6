"""
Unit tests for the M3U generator module.
"""
from m3u_generator import build_restream_url, generate_m3u, restream_name, sanitize_stream_name
from m3u_parser import StreamEntry, parse_m3u_content

BASE_URL = "https://restream.test"


class TestSanitizeStreamName:
    """Tests for sanitize_stream_name()."""

    def test_keeps_safe_characters(self):
        assert sanitize_stream_name("Chan_1.HD-2") == "Chan_1.HD-2"

    def test_replaces_unsafe_characters(self):
        assert sanitize_stream_name("Sport TV 1 (PT)") == "Sport_TV_1__PT_"

    def test_replaces_non_ascii(self):
        assert sanitize_stream_name("Notícias") == "Not_cias"


class TestRestreamName:
    """Tests for restream_name()."""

    def test_prefers_tvg_name(self):
        assert restream_name('#EXTINF:-1 tvg-name="Chan One",Display') == "Chan One"

    def test_falls_back_to_display_name(self):
        assert restream_name("#EXTINF:-1,  Display Name ") == "Display Name"

    def test_unknown_without_name(self):
        assert restream_name("#EXTINF:-1") == "Unknown"


class TestBuildRestreamUrl:
    """Tests for build_restream_url()."""

    def test_builds_live_url(self):
        url = build_restream_url(BASE_URL, '#EXTINF:-1 tvg-name="Chan 1",Chan 1')
        assert url == "https://restream.test/live/Chan_1"

    def test_strips_trailing_slash_from_base(self):
        url = build_restream_url(BASE_URL + "/", "#EXTINF:-1,Chan")
        assert url == "https://restream.test/live/Chan"


class TestGenerateM3u:
    """Tests for generate_m3u()."""

    def test_emits_header_and_rewritten_pairs(self):
        items = [
            StreamEntry(name="A", url="http://src/a", raw='#EXTINF:-1 tvg-name="A" group-title="News",A'),
            StreamEntry(name="B", url="http://src/b", raw="#EXTINF:-1,B Channel"),
        ]

        output = generate_m3u(items, BASE_URL)

        assert output == (
            "#EXTM3U\n"
            '#EXTINF:-1 tvg-name="A" group-title="News",A\n'
            "https://restream.test/live/A\n"
            "#EXTINF:-1,B Channel\n"
            "https://restream.test/live/B_Channel\n"
        )

    def test_keeps_metadata_line_unchanged(self):
        raw = '#EXTINF:-1 tvg-id="x" tvg-logo="http://logo" tvg-name="X",X'
        output = generate_m3u([StreamEntry(name="X", url="http://src/x", raw=raw)], BASE_URL)
        assert raw in output.splitlines()

    def test_skips_items_without_metadata_or_url(self):
        items = [
            StreamEntry(name="NoRaw", url="http://src/1", raw=""),
            StreamEntry(name="NoUrl", url="", raw="#EXTINF:-1,NoUrl"),
            StreamEntry(name="Bad", url="http://src/3", raw="#EXTVLCOPT:foo"),
            StreamEntry(name="Ok", url="http://src/4", raw="#EXTINF:-1,Ok"),
        ]

        output = generate_m3u(items, BASE_URL)

        assert output.splitlines() == ["#EXTM3U", "#EXTINF:-1,Ok", "https://restream.test/live/Ok"]

    def test_accepts_dict_items(self):
        output = generate_m3u([{"raw": "#EXTINF:-1,Dict", "url": "http://src/d"}], BASE_URL)
        assert "https://restream.test/live/Dict" in output

    def test_empty_input_is_header_only(self):
        assert generate_m3u([], BASE_URL) == "#EXTM3U\n"

    def test_reparse_preserves_structure(self):
        """Re-parsing generated output keeps the entry count and yields the restream URLs."""
        source = (
            "#EXTM3U\n"
            '#EXTINF:-1 tvg-name="One" group-title="Filmes",One\nhttp://src/1\n'
            '#EXTINF:-1 tvg-name="Two",Two\nhttp://src/2\n'
            "#EXTINF:-1,Three\nhttp://src/3\n"
            '#extinf:-1 tvg-name="Four",Four\nhttp://src/4\n'
        )
        items = parse_m3u_content(source).items

        reparsed = parse_m3u_content(generate_m3u(items, BASE_URL)).items

        assert len(reparsed) == len(items)
        assert [item.url for item in reparsed] == [
            "https://restream.test/live/One",
            "https://restream.test/live/Two",
            "https://restream.test/live/Three",
            "https://restream.test/live/Four",
        ]
        assert [item.raw for item in reparsed] == [item.raw for item in items]
