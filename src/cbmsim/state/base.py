"""
Sub-state Protocol and Base Implementation.

Every piece of persisted simulation state (input-network connectivity, a
zone's activity, ...) is a ``SubState``: an ordered set of named tensors whose
shapes and dtypes are fully determined by the configuration. That ordering is
the serialization format, so writing and reading are symmetric by
construction:

    write: for spec in field_specs(): encode(tensors[spec.name])
    read:  for spec in field_specs(): tensors[spec.name] = decode(expected=spec)

Reads are validated field by field against the expected shape and dtype, and
``read_state`` commits nothing until every field has been read, so a failed
read leaves the previous contents in place.
"""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Tuple

import torch

from cbmsim.errors import CorruptStateError
from cbmsim.io.stream import StateReader, StateWriter, as_reader, as_writer


@dataclass(frozen=True)
class FieldSpec:
    """Name, shape and dtype of one persisted tensor."""

    name: str
    shape: Tuple[int, ...]
    dtype: torch.dtype


class SubState(ABC):
    """Base class for persisted connectivity and activity states."""

    def __init__(self, tensors: Dict[str, torch.Tensor]):
        specs = self.field_specs()
        missing = [spec.name for spec in specs if spec.name not in tensors]
        if missing:
            raise CorruptStateError(f"{type(self).__name__} is missing fields {missing}")
        for spec in specs:
            tensor = tensors[spec.name]
            if tuple(tensor.shape) != spec.shape or tensor.dtype != spec.dtype:
                raise CorruptStateError(
                    f"{type(self).__name__}.{spec.name} is {tuple(tensor.shape)}/{tensor.dtype}, "
                    f"expected {spec.shape}/{spec.dtype}"
                )
        self._tensors: Dict[str, torch.Tensor] = {spec.name: tensors[spec.name] for spec in specs}

    @abstractmethod
    def field_specs(self) -> List[FieldSpec]:
        """Ordered list of persisted fields.

        Must depend only on configuration held by the instance (sizes,
        plasticity mode), never on tensor contents.
        """

    # ------------------------------------------------------------------
    # Field access
    # ------------------------------------------------------------------

    def __getattr__(self, name: str) -> torch.Tensor:
        tensors = self.__dict__.get("_tensors")
        if tensors is not None and name in tensors:
            return tensors[name]
        raise AttributeError(f"{type(self).__name__} has no field '{name}'")

    def fields(self) -> Iterator[Tuple[str, torch.Tensor]]:
        """Iterate over ``(name, tensor)`` in serialization order."""
        return iter(self._tensors.items())

    @property
    def nbytes(self) -> int:
        return sum(t.numel() * t.element_size() for t in self._tensors.values())

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def write_state(self, stream: Any) -> int:
        """Write every field in order. Returns bytes written."""
        writer = as_writer(stream)
        return sum(writer.write_tensor(self._tensors[spec.name]) for spec in self.field_specs())

    def read_state(self, stream: Any) -> None:
        """Overwrite every field from ``stream``.

        Raises:
            CorruptStateError: If the stream is short or a field does not match.
                The current contents are left untouched in that case.
        """
        device = self.device
        loaded = self._read_fields(as_reader(stream, device=device), self.field_specs())
        self._tensors = loaded

    @staticmethod
    def _read_fields(reader: StateReader, specs: List[FieldSpec]) -> Dict[str, torch.Tensor]:
        return {
            spec.name: reader.read_tensor(spec.name, spec.shape, spec.dtype) for spec in specs
        }

    def to_bytes(self) -> bytes:
        """Serialized form of this sub-state."""
        buffer = io.BytesIO()
        self.write_state(StateWriter(buffer))
        return buffer.getvalue()

    def to_dict(self) -> Dict[str, torch.Tensor]:
        """Cloned tensors keyed by field name."""
        return {name: tensor.clone() for name, tensor in self._tensors.items()}

    # ------------------------------------------------------------------
    # Comparison / device
    # ------------------------------------------------------------------

    @property
    def device(self) -> str:
        first = next(iter(self._tensors.values()), None)
        return str(first.device) if first is not None else "cpu"

    def equals(self, other: "SubState") -> bool:
        """Field-by-field equality (same type, same names, identical values)."""
        if type(self) is not type(other):
            return False
        if list(self._tensors) != list(other._tensors):
            return False
        return all(
            torch.equal(self._tensors[name].cpu(), other._tensors[name].cpu())
            for name in self._tensors
        )

    def __repr__(self) -> str:
        sizes = ", ".join(f"{n}={tuple(t.shape)}" for n, t in self._tensors.items())
        return f"{type(self).__name__}({sizes})"
