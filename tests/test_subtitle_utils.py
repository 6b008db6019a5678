"""
Unit tests for the SRT parser and script validation.

Tests cover:
1. Timecode parsing (comma / dot milliseconds, invalid values)
2. Block parsing, malformed-block skipping, ordering
3. Script validation (no arrows, no cues, too long)
"""
import sys
import os
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from agents.subtitle_utils import parse_srt, parse_timecode, script_duration, validate_script
from utils.errors import (
    ScriptValidationError,
    SCRIPT_NO_CUES_CODE,
    SCRIPT_NO_TIMECODES_CODE,
    SCRIPT_TOO_LONG_CODE,
)


WELL_FORMED = """1
00:00:00,000 --> 00:00:04,000
Did you know

2
00:00:04,000 --> 00:00:09,500
most people never
read past page ten?
"""


class TestParseTimecode:

    def test_comma_milliseconds(self):
        assert parse_timecode("00:01:02,500") == pytest.approx(62.5)

    def test_dot_milliseconds(self):
        assert parse_timecode("01:00:00.250") == pytest.approx(3600.25)

    def test_missing_milliseconds(self):
        assert parse_timecode("00:00:07") == pytest.approx(7.0)

    @pytest.mark.parametrize("value", ["", "abc", "00:00", "00:00:01,000 extra"])
    def test_invalid_values(self, value):
        assert parse_timecode(value) is None


class TestParseSrt:

    def test_well_formed(self):
        cues = parse_srt(WELL_FORMED)
        assert [c.id for c in cues] == ["1", "2"]
        assert cues[0].start_seconds == 0.0
        assert cues[0].end_seconds == 4.0
        assert cues[1].end_seconds == pytest.approx(9.5)
        assert cues[1].text == "most people never read past page ten?"
        assert cues[1].start_timecode == "00:00:04,000"

    def test_idempotent(self):
        """Parsing the same text twice yields identical cues."""
        assert parse_srt(WELL_FORMED) == parse_srt(WELL_FORMED)

    def test_crlf_line_endings(self):
        cues = parse_srt(WELL_FORMED.replace("\n", "\r\n"))
        assert len(cues) == 2

    def test_malformed_blocks_skipped_in_order(self):
        """Interleaved malformed blocks leave exactly the well-formed subset."""
        text = """1
00:00:00,000 --> 00:00:01,000
first

garbage block without timing

2
00:00:01,000 -> 00:00:02,000
wrong arrow

3
00:00:02,000 --> 00:00:03,000
third

4
00:00:05,000 --> 00:00:04,000
ends before it starts

5
00:00:03,000 --> 00:00:04,000
fifth
"""
        cues = parse_srt(text)
        assert [c.id for c in cues] == ["1", "3", "5"]

    def test_block_without_text_is_skipped(self):
        text = "1\n00:00:00,000 --> 00:00:01,000\n\n2\n00:00:01,000 --> 00:00:02,000\nok\n"
        assert [c.id for c in parse_srt(text)] == ["2"]

    def test_sorted_by_start(self):
        text = """2
00:00:05,000 --> 00:00:06,000
later

1
00:00:00,000 --> 00:00:01,000
earlier
"""
        assert [c.id for c in parse_srt(text)] == ["1", "2"]

    def test_empty_input(self):
        assert parse_srt("") == []
        assert parse_srt(None) == []

    def test_script_duration(self):
        assert script_duration(parse_srt(WELL_FORMED)) == pytest.approx(9.5)
        assert script_duration([]) == 0.0


class TestValidateScript:

    def test_no_arrows(self):
        with pytest.raises(ScriptValidationError) as exc:
            validate_script("just some text", 100)
        assert exc.value.code == SCRIPT_NO_TIMECODES_CODE

    def test_no_parsable_cues(self):
        with pytest.raises(ScriptValidationError) as exc:
            validate_script("1\nnot a time --> also not\ntext\n", 100)
        assert exc.value.code == SCRIPT_NO_CUES_CODE

    def test_too_long(self):
        with pytest.raises(ScriptValidationError) as exc:
            validate_script(WELL_FORMED, 5)
        assert exc.value.code == SCRIPT_TOO_LONG_CODE

    def test_valid(self):
        cues = validate_script(WELL_FORMED, 36000)
        assert len(cues) == 2
