"""FileCursor: an open file handle plus the byte offset read so far."""

import os
import logging

logger = logging.getLogger(__name__)


class OpenError(Exception):
    """Raised when a tailed file cannot be opened."""


class SeekError(Exception):
    """Raised when the initial offset cannot be applied to a file."""


class ReadError(Exception):
    """Raised when an incremental read fails."""


class FileCursor:
    """Reads the bytes appended to one file since the previous read.

    The offset only moves forward, by exactly the number of bytes returned,
    except when the file shrinks below it: that is treated as a truncation
    and reading restarts from the beginning of the file.
    """

    def __init__(self, path: str, initial_offset: int = 0):
        self._path = os.path.abspath(path)
        self._offset = 0
        try:
            self._file = open(self._path, "rb")
        except OSError as e:
            raise OpenError(f"Cannot open {self._path}: {e}") from e

        if initial_offset > 0:
            try:
                self._seek(initial_offset)
            except SeekError:
                self._file.close()
                self._file = None
                raise

    def _seek(self, offset: int):
        size = os.fstat(self._file.fileno()).st_size
        if offset > size:
            raise SeekError(
                f"Offset {offset} is past the end of {self._path} ({size} bytes)"
            )
        try:
            self._file.seek(offset, os.SEEK_SET)
        except (OSError, ValueError) as e:
            raise SeekError(f"Cannot seek {self._path} to {offset}: {e}") from e
        self._offset = offset

    @classmethod
    def at_end(cls, path: str) -> "FileCursor":
        """Open a cursor positioned at the file's current size."""
        try:
            size = os.path.getsize(path)
        except OSError as e:
            raise OpenError(f"Cannot stat {path}: {e}") from e
        return cls(path, size)

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._file is None

    def current_offset(self) -> int:
        return self._offset

    def read_new(self) -> bytes:
        """Return every byte appended since the last read (possibly b"")."""
        if self._file is None:
            raise ReadError(f"Cursor for {self._path} is closed")

        try:
            size = os.fstat(self._file.fileno()).st_size
            if size < self._offset:
                logger.info("File truncated: %s (size %d < offset %d), rereading from start",
                            self._path, size, self._offset)
                self._file.seek(0, os.SEEK_SET)
                self._offset = 0

            available = size - self._offset
            if available == 0:
                return b""

            self._file.seek(self._offset, os.SEEK_SET)
            data = self._file.read(available)
        except OSError as e:
            raise ReadError(f"Failed to read {self._path}: {e}") from e

        self._offset += len(data)
        logger.debug("Read %d of %d bytes from %s (offset now %d)",
                     len(data), available, self._path, self._offset)
        return data

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"FileCursor({self._path!r}, offset={self._offset}, {state})"
