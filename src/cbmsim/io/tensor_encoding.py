"""
Tensor Encoding - Binary serialization for PyTorch tensors.

Supports dense tensors of the dtypes used by simulation state
(float32, float64, int32, int64, uint8, bool).

Encoding format for each tensor:
    [4 bytes] dtype code (0=float32, 1=float64, 2=int32, 3=int64, 4=bool, 5=uint8)
    [4 bytes] ndim
    [4*ndim bytes] shape
    [variable] data (little-endian, C order)

Decoding is strict: a short read or a tensor whose shape/dtype differs from
what the caller expects raises ``CorruptStateError`` rather than returning a
partially filled tensor.
"""

from __future__ import annotations

import math
import struct
from enum import IntEnum
from typing import BinaryIO, Optional, Sequence, Tuple

import numpy as np
import torch

from cbmsim.errors import CorruptStateError, check_stream_shape


class DType(IntEnum):
    """Supported data types."""

    FLOAT32 = 0
    FLOAT64 = 1
    INT32 = 2
    INT64 = 3
    BOOL = 4
    UINT8 = 5


# Wire code per supported torch dtype
DTYPE_TO_CODE = {
    torch.float32: DType.FLOAT32,
    torch.float64: DType.FLOAT64,
    torch.int32: DType.INT32,
    torch.int64: DType.INT64,
    torch.bool: DType.BOOL,
    torch.uint8: DType.UINT8,
}

CODE_TO_DTYPE = {v: k for k, v in DTYPE_TO_CODE.items()}

CODE_TO_NUMPY = {
    DType.FLOAT32: np.dtype("<f4"),
    DType.FLOAT64: np.dtype("<f8"),
    DType.INT32: np.dtype("<i4"),
    DType.INT64: np.dtype("<i8"),
    DType.BOOL: np.dtype(np.bool_),
    DType.UINT8: np.dtype(np.uint8),
}


def read_exact(file: BinaryIO, length: int, what: str = "data") -> bytes:
    """Read exactly ``length`` bytes or raise ``CorruptStateError``."""
    data = file.read(length)
    if data is None or len(data) < length:
        got = 0 if data is None else len(data)
        raise CorruptStateError(f"Unexpected end of stream reading {what}: {got} < {length} bytes")
    return data


def encode_tensor(tensor: torch.Tensor, file: BinaryIO) -> int:
    """Write ``tensor`` as a header followed by its raw little-endian data.

    Returns:
        Number of bytes written

    Raises:
        ValueError: If the tensor's dtype has no wire code
    """
    code = DTYPE_TO_CODE.get(tensor.dtype)
    if code is None:
        raise ValueError(f"Unsupported dtype for encoding: {tensor.dtype}")
    shape = tuple(tensor.shape)
    header = struct.pack(f"<II{len(shape)}I", code, len(shape), *shape)
    payload = _to_wire_bytes(tensor, code)
    file.write(header)
    file.write(payload)
    return len(header) + len(payload)


def _to_wire_bytes(tensor: torch.Tensor, code: DType) -> bytes:
    host = tensor.detach().to("cpu").contiguous()
    return host.numpy().astype(CODE_TO_NUMPY[code], copy=False).tobytes()


def decode_tensor(
    file: BinaryIO,
    device: str = "cpu",
    expected_shape: Optional[Sequence[int]] = None,
    expected_dtype: Optional[torch.dtype] = None,
    name: str = "tensor",
) -> torch.Tensor:
    """Read one tensor written by ``encode_tensor``.

    Args:
        file: Binary file to read from
        device: Device to place tensor on
        expected_shape: If given, the stored shape must match exactly
        expected_dtype: If given, the stored dtype must match exactly
        name: Field name used in error messages

    Returns:
        Decoded PyTorch tensor

    Raises:
        CorruptStateError: On truncated data or shape/dtype mismatch
    """
    dtype_code = struct.unpack("<I", read_exact(file, 4, f"{name} dtype"))[0]
    if dtype_code not in CODE_TO_DTYPE:
        raise CorruptStateError(f"Unknown dtype code {dtype_code} for '{name}'")
    dtype = CODE_TO_DTYPE[DType(dtype_code)]
    if expected_dtype is not None and dtype != expected_dtype:
        raise CorruptStateError(
            f"State field '{name}' has dtype {dtype} in stream, expected {expected_dtype}"
        )

    # ndim is checked before the shape so a garbage count cannot drive a huge read
    ndim = struct.unpack("<I", read_exact(file, 4, f"{name} ndim"))[0]
    if expected_shape is not None and ndim != len(expected_shape):
        raise CorruptStateError(
            f"State field '{name}' has {ndim} dimensions in stream, "
            f"expected {len(expected_shape)}"
        )
    shape_bytes = read_exact(file, 4 * ndim, f"{name} shape")
    shape = struct.unpack(f"<{ndim}I", shape_bytes) if ndim else ()
    if expected_shape is not None:
        check_stream_shape(name, shape, tuple(expected_shape))

    return _from_wire_bytes(file, shape, DType(dtype_code), device, name)


def _from_wire_bytes(
    file: BinaryIO, shape: Tuple[int, ...], code: DType, device: str, name: str
) -> torch.Tensor:
    np_dtype = CODE_TO_NUMPY[code]
    count = math.prod(shape)
    raw = read_exact(file, count * np_dtype.itemsize, f"{name} data")
    # frombuffer views are read-only; torch needs a writable copy
    array = np.frombuffer(raw, dtype=np_dtype).reshape(shape).copy()
    return torch.from_numpy(array).to(device)


def estimate_encoding_size(tensor: torch.Tensor) -> int:
    """Bytes ``encode_tensor`` will write for ``tensor``."""
    return 8 + 4 * tensor.dim() + tensor.numel() * tensor.element_size()
