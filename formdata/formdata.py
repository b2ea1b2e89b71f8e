"""Streaming ``multipart/form-data`` (RFC 7578) document builder.

Parts are written to the sink as soon as they are added, so a file of any size
is copied through in chunks and never held in memory.

    >>> import io
    >>> form = FormData(io.BytesIO())
    >>> form.write_field("cute", "yes")
    >>> document = form.finish().getvalue()
"""

import base64
import logging
import os
import secrets
import shutil
import struct
import time
from typing import BinaryIO, Optional, Union

logger = logging.getLogger(__name__)

CRLF = b"\r\n"
BOUNDARY_WIDTH = 68
NONCE_RANDOM_BYTES = 12

PathType = Union[str, bytes, os.PathLike[str], os.PathLike[bytes]]


class FinishedError(RuntimeError):
    """Raised when a ``FormData`` is used after ``finish()`` has succeeded."""


def generate_boundary() -> str:
    """Return a 68 character boundary, a base64 nonce padded on the left with ``-``.

    The nonce packs the sub-second nanoseconds (4 bytes) and whole seconds
    (8 bytes) of the current time in native byte order, followed by 12 bytes
    from the operating system's CSPRNG.
    """
    now = time.time_ns()
    if now < 0:
        raise RuntimeError("system time should be after the Unix epoch")
    seconds, nanos = divmod(now, 1_000_000_000)

    buf = struct.pack("=IQ", nanos, seconds) + secrets.token_bytes(NONCE_RANDOM_BYTES)
    nonce = base64.urlsafe_b64encode(buf).decode("ascii")
    return nonce.rjust(BOUNDARY_WIDTH, "-")


def _lossy_filename(path: PathType) -> str:
    name = os.path.basename(os.fspath(path))
    if isinstance(name, bytes):
        return name.decode("utf-8", "replace")
    # str paths carry undecodable bytes as surrogate escapes
    return name.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


class FormData:
    """``multipart/form-data`` document builder.

    Wraps a binary sink (anything with ``write(bytes)``) and appends each part
    to it in call order. ``finish()`` writes the closing delimiter and hands
    the sink back; every later call raises ``FinishedError``.

    Field names, filenames and content types are written as given. Quotes are
    not escaped, and payloads are not checked for the boundary string.
    """

    def __init__(self, writer: BinaryIO) -> None:
        self._boundary = generate_boundary()
        self._writer: Optional[BinaryIO] = writer

    def __repr__(self) -> str:
        state = "finished" if self.finished else "building"
        return f"<FormData boundary={self._boundary!r} {state}>"

    @property
    def boundary(self) -> str:
        return self._boundary

    @property
    def finished(self) -> bool:
        return self._writer is None

    def finish(self) -> BinaryIO:
        """Write the closing delimiter and return the writer.

        Raises ``FinishedError`` if called more than once. Errors from the
        writer propagate; the builder counts as finished either way.
        """
        writer = self._writer
        if writer is None:
            raise FinishedError("you can only finish once")
        self._writer = None

        writer.write(f"--{self._boundary}--\r\n".encode("utf-8"))
        logger.debug("finished multipart document with boundary %s", self._boundary)
        return writer

    def _require_writer(self) -> BinaryIO:
        if self._writer is None:
            raise FinishedError("this method cannot be used after using `finish()`")
        return self._writer

    def _write_header(
        self,
        name: str,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> BinaryIO:
        writer = self._require_writer()

        header = f'--{self._boundary}\r\nContent-Disposition: form-data; name="{name}"'
        if filename is not None:
            header += f'; filename="{filename}"'
        header += "\r\n"
        if content_type is not None:
            header += f"Content-Type: {content_type}\r\n"
        header += "\r\n"

        writer.write(header.encode("utf-8"))
        return writer

    def write_field(self, name: str, value: str) -> None:
        """Write a non-file field to the document."""
        writer = self._write_header(name)
        writer.write(value.encode("utf-8") + CRLF)
        logger.debug("wrote field %r", name)

    def write_file(
        self,
        name: str,
        reader: BinaryIO,
        filename: Optional[str],
        content_type: str,
    ) -> None:
        """Write a file field, copying everything ``reader`` yields.

        RFC 7578 section 4.2 says a filename SHOULD be supplied, but it may be
        left out (``None``) when it is unavailable, meaningless or private.
        The content is copied byte for byte, line endings included.
        """
        writer = self._write_header(name, filename, content_type)
        shutil.copyfileobj(reader, writer)
        writer.write(CRLF)
        logger.debug("wrote file field %r (filename=%r, content_type=%s)", name, filename, content_type)

    def write_path(self, name: str, path: PathType, content_type: str) -> None:
        """Write a file field, opening ``path`` and copying its data.

        The filename parameter is taken from the last component of ``path``;
        use ``write_file`` to send a different one or none. ``open()`` errors
        are raised before anything is written.
        """
        self._require_writer()
        with open(path, "rb") as reader:
            self.write_file(name, reader, _lossy_filename(path), content_type)

    def content_type_header(self) -> str:
        """Return the ``Content-Type`` header value that matches the document.

        Pass it to your HTTP client along with the finished body, e.g.
        ``headers={"Content-Type": form.content_type_header()}``.
        """
        return f"multipart/form-data; boundary={self._boundary}"
