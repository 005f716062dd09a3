"""
Subtitle Parser Module

Parses SRT and VTT transcripts into SubtitleEntry sequences.
"""
import re
from typing import List, Optional
from pathlib import Path
from loguru import logger

from .models import SubtitleEntry


class SubtitleParser:
    """
    Subtitle parser for SRT and VTT formats.

    Usage:
        parser = SubtitleParser()
        entries = parser.parse_file("subtitles.srt")
        # or
        entries = parser.parse_srt(srt_content)

    Cues with empty text or non-positive duration are skipped, since a
    SubtitleEntry must start before it ends.
    """

    SRT_TIMING = re.compile(
        r'(\d{1,2}:\d{2}:\d{2}[,.]\d{3})\s*-->\s*(\d{1,2}:\d{2}:\d{2}[,.]\d{3})'
    )
    VTT_TIMING = re.compile(r'([\d:.]+)\s*-->\s*([\d:.]+)')

    def parse_file(self, file_path: Path) -> List[SubtitleEntry]:
        """
        Parse a subtitle file (format chosen from the suffix).

        Raises:
            FileNotFoundError: if the file does not exist
        """
        file_path = Path(file_path)
        content = file_path.read_text(encoding='utf-8-sig')

        if file_path.suffix.lower() == '.vtt':
            return self.parse_vtt(content)
        return self.parse_srt(content)

    def parse_srt(self, content: str) -> List[SubtitleEntry]:
        """Parse SRT content."""
        entries = []
        blocks = re.split(r'\n\s*\n', content.replace('\r\n', '\n').strip())

        for block in blocks:
            lines = block.strip().split('\n')
            if len(lines) < 2:
                continue

            # Index line is optional in sloppy files
            timing_idx = 0 if '-->' in lines[0] else 1
            timing_match = self.SRT_TIMING.match(lines[timing_idx].strip())
            if not timing_match:
                continue

            start = self._parse_srt_time(timing_match.group(1))
            end = self._parse_srt_time(timing_match.group(2))
            text = '\n'.join(lines[timing_idx + 1:]).strip()

            entry = self._make_entry(start, end, text)
            if entry:
                entries.append(entry)

        logger.info(f"Parsed {len(entries)} entries from SRT")
        return entries

    def parse_vtt(self, content: str) -> List[SubtitleEntry]:
        """Parse WebVTT content."""
        entries = []
        content = content.replace('\r\n', '\n')

        if content.startswith('WEBVTT'):
            content = re.sub(r'^WEBVTT.*?\n\n', '', content, flags=re.DOTALL)

        for block in re.split(r'\n\s*\n', content.strip()):
            lines = block.strip().split('\n')
            timing_idx = 0 if '-->' in lines[0] else 1
            if timing_idx >= len(lines):
                continue

            timing_match = self.VTT_TIMING.match(lines[timing_idx].strip())
            if not timing_match:
                continue

            start = self._parse_vtt_time(timing_match.group(1))
            end = self._parse_vtt_time(timing_match.group(2))
            text = '\n'.join(lines[timing_idx + 1:]).strip()
            # Remove VTT styling tags
            text = re.sub(r'<[^>]+>', '', text)

            entry = self._make_entry(start, end, text)
            if entry:
                entries.append(entry)

        logger.info(f"Parsed {len(entries)} entries from VTT")
        return entries

    def _make_entry(self, start: float, end: float, text: str) -> Optional[SubtitleEntry]:
        if not text:
            return None
        if start >= end:
            logger.warning(f"Skipping cue with invalid timing {start:.3f} --> {end:.3f}: {text[:40]!r}")
            return None
        return SubtitleEntry(start=start, end=end, text=text)

    def _parse_srt_time(self, time_str: str) -> float:
        """Parse SRT timestamp (HH:MM:SS,mmm) to seconds"""
        hours, minutes, rest = time_str.replace(',', '.').split(':')
        seconds, millis = rest.split('.')
        return int(hours) * 3600 + int(minutes) * 60 + int(seconds) + int(millis) / 1000

    def _parse_vtt_time(self, time_str: str) -> float:
        """Parse VTT timestamp (HH:MM:SS.mmm or MM:SS.mmm) to seconds"""
        parts = time_str.split(':')

        if len(parts) == 3:
            hours, minutes, sec_ms = int(parts[0]), int(parts[1]), parts[2]
        elif len(parts) == 2:
            hours, minutes, sec_ms = 0, int(parts[0]), parts[1]
        else:
            return 0.0

        if '.' in sec_ms:
            sec, ms = sec_ms.split('.', 1)
            seconds = int(sec)
            milliseconds = int(ms.ljust(3, '0')[:3])
        else:
            seconds = int(sec_ms)
            milliseconds = 0

        return hours * 3600 + minutes * 60 + seconds + milliseconds / 1000
