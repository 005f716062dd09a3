"""
Subtitle Formatter Module

Formats SubtitleEntry sequences as SRT or VTT.
"""
from typing import Sequence
from pathlib import Path
from loguru import logger

from .models import SubtitleEntry


class SubtitleFormatter:
    """Formats subtitle entries into SRT or VTT files."""

    def format_srt(self, entries: Sequence[SubtitleEntry]) -> str:
        lines = []
        for index, entry in enumerate(entries, start=1):
            lines.append(str(index))
            lines.append(
                f"{self._format_timestamp(entry.start, ',')} --> {self._format_timestamp(entry.end, ',')}"
            )
            lines.append(entry.text)
            lines.append("")
        return "\n".join(lines)

    def format_vtt(self, entries: Sequence[SubtitleEntry]) -> str:
        lines = ["WEBVTT", ""]
        for entry in entries:
            lines.append(
                f"{self._format_timestamp(entry.start, '.')} --> {self._format_timestamp(entry.end, '.')}"
            )
            lines.append(entry.text)
            lines.append("")
        return "\n".join(lines)

    def save(self, entries: Sequence[SubtitleEntry], output_path: Path) -> Path:
        """
        Write entries to disk; format is chosen from the suffix (.vtt or SRT).

        Returns:
            The path written
        """
        output_path = Path(output_path)
        if output_path.suffix.lower() == '.vtt':
            content = self.format_vtt(entries)
        else:
            content = self.format_srt(entries)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(content, encoding='utf-8')
        logger.info(f"Saved {len(entries)} entries to {output_path}")
        return output_path

    @staticmethod
    def _format_timestamp(seconds: float, millis_sep: str) -> str:
        """Format seconds as HH:MM:SS<sep>mmm"""
        total_ms = int(round(max(seconds, 0.0) * 1000))
        hours, rem = divmod(total_ms, 3600 * 1000)
        minutes, rem = divmod(rem, 60 * 1000)
        secs, millis = divmod(rem, 1000)
        return f"{hours:02d}:{minutes:02d}:{secs:02d}{millis_sep}{millis:03d}"
