"""Incremental reading of append-only JSONL transcripts.

This module reads only the bytes appended since a given offset, using a small
fixed-size buffer so memory stays bounded regardless of file size. Lines are
split on raw bytes, so a record (or a multi-byte character) straddling a
buffer boundary is reassembled before it is decoded.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 8192


@dataclass
class ReadResult:
    """Outcome of one incremental read.

    Attributes:
        records: Decoded records in file order.
        end_offset: Offset to resume from on the next read.
        file_size: File size observed at the start of the read.
        lines_read: Non-blank lines seen, decodable or not.
        decode_errors: Lines that failed to decode and were skipped.
        pending_bytes: Bytes of an unterminated tail left for a later read.
    """

    records: list[Any] = field(default_factory=list)
    end_offset: int = 0
    file_size: int = 0
    lines_read: int = 0
    decode_errors: int = 0
    pending_bytes: int = 0


class IncrementalLogReader:
    """Reads new lines from a file without re-reading what came before.

    Attributes:
        chunk_size: Bytes read per ``read`` call.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        decode: Callable[[str], Any] = json.loads,
        logger: logging.Logger | None = None,
    ):
        """Initialize the reader.

        Args:
            chunk_size: Fixed read buffer size in bytes.
            decode: Turns one line of text into a record; raises ValueError
                (or RecursionError) on malformed input.
            logger: Logger to use instead of the module logger.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self._decode = decode
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def read_new(
        self,
        file_path: str | Path,
        from_offset: int,
        settled_size: int | None = None,
    ) -> ReadResult:
        """Read and decode the records appended after ``from_offset``.

        Complete lines are always consumed. An unterminated final fragment is
        consumed only when the file has stopped growing, i.e. its size equals
        ``settled_size`` (the size seen on the previous cycle); otherwise the
        returned offset stops before it so the next read picks it up whole.
        Passing ``settled_size=None`` always consumes the fragment.

        Filesystem errors are logged and reported as "no new bytes": the
        returned offset equals ``from_offset``.

        Args:
            file_path: File to read.
            from_offset: Byte offset already consumed.
            settled_size: File size observed on the previous cycle.

        Returns:
            ReadResult with the decoded records and the resume offset.
        """
        path = Path(file_path)
        result = ReadResult(end_offset=from_offset)

        try:
            file_size = path.stat().st_size
        except FileNotFoundError:
            self._logger.debug(f"Transcript file does not exist: {path}")
            return result
        except OSError as e:
            self._logger.error(f"Failed to stat transcript file {path}: {e}")
            return result

        result.file_size = file_size
        if from_offset >= file_size:
            if from_offset > file_size:
                self._logger.warning(
                    f"Transcript {path} is shorter than its offset "
                    f"({from_offset} > {file_size}); waiting for it to grow"
                )
            return result

        include_tail = settled_size is None or settled_size == file_size
        try:
            with path.open("rb") as f:
                f.seek(from_offset)
                remaining = file_size - from_offset
                position = from_offset
                partial = b""

                while remaining > 0:
                    chunk = f.read(min(self.chunk_size, remaining))
                    if not chunk:
                        break
                    position += len(chunk)
                    remaining -= len(chunk)

                    parts = (partial + chunk).split(b"\n")
                    partial = parts.pop()
                    for line in parts:
                        self._consume_line(line, path, result)
                    result.end_offset = position - len(partial)

                if partial.strip() and not include_tail:
                    result.pending_bytes = len(partial)
                else:
                    if partial.strip():
                        self._consume_line(partial, path, result)
                    result.end_offset = position

        except OSError as e:
            self._logger.error(f"OS error reading {path}: {e}")
            return ReadResult(end_offset=from_offset, file_size=file_size)

        if result.lines_read:
            self._logger.debug(
                f"Read {result.lines_read} new lines from {path} "
                f"(offset {from_offset} -> {result.end_offset})"
            )
        return result

    def _consume_line(self, raw: bytes, path: Path, result: ReadResult) -> None:
        line = raw.strip()
        if not line:
            return
        result.lines_read += 1
        try:
            result.records.append(self._decode(line.decode("utf-8")))
        except (ValueError, RecursionError) as e:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors;
            # pathologically nested JSON exhausts the recursion limit instead.
            result.decode_errors += 1
            self._logger.debug(f"Skipping undecodable line in {path}: {e}")
