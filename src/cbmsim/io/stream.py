"""
State Stream - Sequential binary reading and writing of simulation state.

A state stream is a flat concatenation of blobs with no header or magic
number. Readers must know, out of band, how many zones and which plasticity
mode the stream was written with. Both sides keep a running SHA-256 digest of
the bytes that passed through, which gives a cheap fingerprint of a state.

Blob kinds:
    tensor  - see ``tensor_encoding`` (dtype, ndim, shape, data)
    json    - [8 bytes little-endian length][UTF-8 JSON]
    bytes   - raw, caller knows the length
"""

from __future__ import annotations

import hashlib
import json
import struct
from typing import Any, BinaryIO, Dict, Optional, Sequence

import torch

from cbmsim.errors import CorruptStateError
from cbmsim.io.tensor_encoding import decode_tensor, encode_tensor, read_exact


class _HashingWriteFile:
    """File adapter that feeds every written chunk into a hasher."""

    def __init__(self, file: BinaryIO, hasher: Any):
        self._file = file
        self._hasher = hasher

    def write(self, data: bytes) -> int:
        self._file.write(data)
        self._hasher.update(data)
        return len(data)


class _HashingReadFile:
    """File adapter that feeds every read chunk into a hasher."""

    def __init__(self, file: BinaryIO, hasher: Any):
        self._file = file
        self._hasher = hasher

    def read(self, length: int = -1) -> bytes:
        data = self._file.read(length)
        if data:
            self._hasher.update(data)
        return data


class StateWriter:
    """Sequential binary writing with a running checksum."""

    def __init__(self, file: BinaryIO):
        self.file = file
        self.hasher = hashlib.sha256()
        self._sink = _HashingWriteFile(file, self.hasher)
        self._write_count = 0

    def write_tensor(self, tensor: torch.Tensor) -> int:
        """Write one tensor and return bytes written."""
        written = encode_tensor(tensor, self._sink)  # type: ignore[arg-type]
        self._write_count += written
        return written

    def write_json(self, data: Dict[str, Any]) -> int:
        """Write length-prefixed JSON data and return bytes written."""
        json_bytes = json.dumps(data, sort_keys=True).encode("utf-8")
        self._sink.write(struct.pack("<Q", len(json_bytes)))
        self._sink.write(json_bytes)
        self._write_count += 8 + len(json_bytes)
        return 8 + len(json_bytes)

    def write_bytes(self, data: bytes) -> int:
        """Write raw bytes and return bytes written."""
        self._sink.write(data)
        self._write_count += len(data)
        return len(data)

    @property
    def bytes_written(self) -> int:
        return self._write_count

    def digest(self) -> bytes:
        """SHA-256 of everything written so far."""
        return self.hasher.copy().digest()


class StateReader:
    """Sequential binary reading with validation."""

    def __init__(self, file: BinaryIO, device: str = "cpu"):
        self.file = file
        self.device = device
        self.hasher = hashlib.sha256()
        self._source = _HashingReadFile(file, self.hasher)
        self._read_count = 0

    def read_tensor(
        self,
        name: str,
        expected_shape: Optional[Sequence[int]] = None,
        expected_dtype: Optional[torch.dtype] = None,
    ) -> torch.Tensor:
        """Read one tensor, validating its shape and dtype when given.

        Raises:
            CorruptStateError: On truncated data or mismatch
        """
        tensor = decode_tensor(
            self._source,  # type: ignore[arg-type]
            device=self.device,
            expected_shape=expected_shape,
            expected_dtype=expected_dtype,
            name=name,
        )
        self._read_count += 8 + 4 * tensor.dim() + tensor.numel() * tensor.element_size()
        return tensor

    def read_json(self, what: str = "json") -> Dict[str, Any]:
        """Read length-prefixed JSON data."""
        (length,) = struct.unpack("<Q", read_exact(self._source, 8, f"{what} length"))  # type: ignore[arg-type]
        data = read_exact(self._source, length, what)  # type: ignore[arg-type]
        self._read_count += 8 + length
        try:
            return dict(json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptStateError(f"Malformed {what} block: {exc}") from exc

    def read_exact(self, length: int, what: str = "data") -> bytes:
        """Read exactly ``length`` raw bytes."""
        data = read_exact(self._source, length, what)  # type: ignore[arg-type]
        self._read_count += length
        return data

    def at_eof(self) -> bool:
        """True if no further bytes are available (does not consume input)."""
        peek = getattr(self.file, "peek", None)
        if peek is not None:
            return len(peek(1)) == 0
        position = self.file.tell()
        at_end = len(self.file.read(1)) == 0
        self.file.seek(position)
        return at_end

    @property
    def bytes_read(self) -> int:
        return self._read_count

    def digest(self) -> bytes:
        """SHA-256 of everything read so far."""
        return self.hasher.copy().digest()


def as_writer(stream: Any) -> StateWriter:
    """Wrap a binary file object in a ``StateWriter`` (no-op for writers)."""
    return stream if isinstance(stream, StateWriter) else StateWriter(stream)


def as_reader(stream: Any, device: str = "cpu") -> StateReader:
    """Wrap a binary file object in a ``StateReader`` (no-op for readers)."""
    return stream if isinstance(stream, StateReader) else StateReader(stream, device=device)
