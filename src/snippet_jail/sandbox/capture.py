"""Bounded, resettable output sink shared by stdout and stderr of the engine."""

from __future__ import annotations

import codecs
import logging

from snippet_jail.errors import ConfigurationError

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... [output truncated]\n"


class OutputCapture:
    """Accumulate engine output up to a hard cap.

    The buffer is pre-sized for typical output and grows on demand.  Bytes
    written past ``max_bytes`` are dropped and :meth:`drain` appends
    :data:`TRUNCATION_MARKER`.  The same instance may be the target of both
    stdout and stderr.

    Not thread-safe: the owner must not drain or reset while a writer is
    still active.
    """

    def __init__(
        self,
        initial_capacity: int = 3200,
        max_bytes: int = 65_536,
        encoding: str = "utf-8",
    ) -> None:
        if initial_capacity <= 0:
            raise ConfigurationError("initial_capacity must be a positive integer.")
        if max_bytes <= 0:
            raise ConfigurationError("max_bytes must be a positive integer.")
        try:
            self._encoding = codecs.lookup(encoding).name
        except LookupError as exc:
            raise ConfigurationError(f"Output encoding {encoding!r} is not available.") from exc

        self._initial_capacity = min(initial_capacity, max_bytes)
        self._max_bytes = max_bytes
        self._buffer = bytearray(self._initial_capacity)
        self._size = 0
        self._truncated = False

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def truncated(self) -> bool:
        return self._truncated

    def __len__(self) -> int:
        return self._size

    def write(self, data: bytes | str) -> int:
        """Append *data* (text is encoded first) and return its full length."""
        if isinstance(data, str):
            data = data.encode(self._encoding)
        written = len(data)

        room = self._max_bytes - self._size
        if written > room:
            if not self._truncated:
                logger.debug("Output exceeded %d bytes, truncating", self._max_bytes)
            self._truncated = True
            data = data[:room]

        end = self._size + len(data)
        if end > len(self._buffer):
            grown = max(end, min(len(self._buffer) * 2, self._max_bytes))
            self._buffer.extend(bytes(grown - len(self._buffer)))
        self._buffer[self._size:end] = data
        self._size = end
        return written

    def flush(self) -> None:
        """Nothing is buffered outside the capture itself."""

    def drain(self) -> str:
        """Return everything captured so far as text and reset the capture."""
        raw = bytes(self._buffer[: self._size])
        # When truncated the cut may split a multi-byte character; a
        # non-final decode holds the partial sequence back instead of
        # emitting a replacement character.
        decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        text = decoder.decode(raw, final=not self._truncated)
        if self._truncated:
            text += TRUNCATION_MARKER
        self.reset()
        return text

    def reset(self) -> None:
        """Discard all captured output and shrink back to the initial capacity."""
        self._size = 0
        self._truncated = False
        if len(self._buffer) > self._initial_capacity:
            self._buffer = bytearray(self._initial_capacity)
