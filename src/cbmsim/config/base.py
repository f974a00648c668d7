"""
Base Configuration Classes.

This module provides the common pieces every cbmsim configuration shares:
device/dtype selection, seeding, and conversion to and from plain dicts and
already-parsed string parameter maps (the form a build file parser hands
over).

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Dict, Mapping, Optional, Type, TypeVar

import torch

from cbmsim.errors import ConfigurationError

TParams = TypeVar("TParams", bound="ParamsMixin")


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        as_float = float(value)
        if not as_float.is_integer():
            raise
        return int(as_float)


# Field annotations are strings under postponed evaluation
_CONVERTERS: Dict[str, Callable[[str], Any]] = {
    "int": _parse_int,
    "float": float,
    "bool": parse_bool,
    "str": str,
    "Optional[int]": lambda v: None if v.strip().lower() in ("", "none") else _parse_int(v),
}


class ParamsMixin:
    """Dict and param-map conversion for parameter dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls: Type[TParams], data: Mapping[str, Any]) -> TParams:
        """Build from a dictionary produced by ``to_dict``.

        Raises:
            ConfigurationError: If the dictionary has keys the class does not know
        """
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown {cls.__name__} parameters: {sorted(unknown)}"
            )
        return cls(**dict(data))

    @classmethod
    def from_param_map(cls: Type[TParams], param_map: Mapping[str, str]) -> TParams:
        """Build from a parsed parameter section of string key/value pairs.

        Each value is converted with the type declared on the matching field.
        Missing keys keep their defaults.

        Raises:
            ConfigurationError: On unknown keys or values that fail conversion
        """
        by_name = {f.name: f for f in fields(cls)}  # type: ignore[arg-type]
        kwargs: Dict[str, Any] = {}
        for key, raw in param_map.items():
            field_ = by_name.get(key)
            if field_ is None:
                raise ConfigurationError(f"Unknown {cls.__name__} parameter '{key}'")
            type_name = field_.type if isinstance(field_.type, str) else field_.type.__name__
            converter = _CONVERTERS.get(type_name)
            if converter is None:
                raise ConfigurationError(
                    f"Cannot convert parameter '{key}' of type {type_name} from text"
                )
            try:
                kwargs[key] = converter(raw) if isinstance(raw, str) else raw
            except ValueError as exc:
                raise ConfigurationError(
                    f"Invalid value {raw!r} for {cls.__name__}.{key}: {exc}"
                ) from exc
        return cls(**kwargs)


@dataclass(frozen=True)
class BaseConfig:
    """Base configuration with common fields for all components.

    This provides standard fields that appear in almost every config:
    - device: Hardware device (cpu/cuda)
    - dtype: Tensor data type for floating point state
    - seed: Random seed for reproducibility
    """

    device: str = "cpu"
    """Device to run on: 'cpu', 'cuda', 'cuda:0', etc."""

    dtype: str = "float32"
    """Data type for floating point tensors: 'float32', 'float64'"""

    seed: Optional[int] = None
    """Master random seed. None = seed from wall-clock time."""

    def get_torch_device(self) -> torch.device:
        """Get PyTorch device object."""
        return torch.device(self.device)

    def get_torch_dtype(self) -> torch.dtype:
        """Get PyTorch dtype object."""
        dtype_map = {
            "float32": torch.float32,
            "float64": torch.float64,
        }
        if self.dtype not in dtype_map:
            raise ConfigurationError(
                f"Unknown dtype '{self.dtype}'. "
                f"Choose from: {list(dtype_map.keys())}"
            )
        return dtype_map[self.dtype]
