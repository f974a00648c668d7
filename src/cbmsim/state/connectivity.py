"""
Connectivity States - Fixed synaptic topology of the input network and zones.

Connectivity is stored as fan-in index tables: for a projection ``pre_to_post``
the tensor has shape ``[num_post, fan_in]`` and row ``i`` lists the
presynaptic indices that contact postsynaptic cell ``i``. The reverse view
(what a presynaptic cell drives) is derived on demand.

A connectivity state is generated once from a seed, or read verbatim from a
state stream, and never changes afterwards. Two states generated from the same
seed and parameters are identical.

Biological layout:
    InNet:  MF→GR, GO→GR, MF→GO, GR→GO, GO→GO (no autapses), GR→SC
    Zone:   GR→PC, GR→BC, BC→PC, SC→PC, PC→DCN, MF→DCN, DCN→IO, IO→PC

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

import torch

from cbmsim.config import ConnectivityParams
from cbmsim.state.base import FieldSpec, SubState
from cbmsim.state.seeds import make_generator
from cbmsim.io.stream import as_reader

# Above this many candidate pairs, duplicate entries are redrawn instead of
# ranking a full score matrix per row
_DENSE_SAMPLING_LIMIT = 1 << 24


def sample_fan_in(
    num_post: int,
    fan_in: int,
    num_pre: int,
    generator: torch.Generator,
    exclude_self: bool = False,
) -> torch.Tensor:
    """Draw ``fan_in`` distinct presynaptic partners for each postsynaptic cell.

    Args:
        num_post: Number of postsynaptic cells (rows)
        fan_in: Partners per postsynaptic cell
        num_pre: Size of the presynaptic population
        generator: Seeded generator; the result is a pure function of its state
        exclude_self: Forbid ``pre == post`` (recurrent projections)

    Returns:
        int32 tensor ``[num_post, fan_in]``, each row sorted ascending
    """
    if fan_in * 4 >= num_pre or num_post * num_pre <= _DENSE_SAMPLING_LIMIT:
        scores = torch.rand(num_post, num_pre, generator=generator)
        if exclude_self:
            diag = torch.arange(min(num_post, num_pre))
            scores[diag, diag] = 2.0  # sorts last
        indices = scores.argsort(dim=1)[:, :fan_in]
    else:
        indices = torch.randint(0, num_pre, (num_post, fan_in), generator=generator)
        while True:
            bad = _invalid_entries(indices, exclude_self)
            n_bad = int(bad.sum().item())
            if n_bad == 0:
                break
            indices[bad] = torch.randint(0, num_pre, (n_bad,), generator=generator)
    return indices.sort(dim=1).values.to(torch.int32)


def _invalid_entries(indices: torch.Tensor, exclude_self: bool) -> torch.Tensor:
    """Mask of entries to redraw: every repeat after the first in its row."""
    ordered, order = indices.sort(dim=1, stable=True)
    repeat = torch.zeros_like(indices, dtype=torch.bool)
    repeat[:, 1:] = ordered[:, 1:] == ordered[:, :-1]
    invalid = torch.zeros_like(repeat).scatter_(1, order, repeat)
    if exclude_self:
        rows = torch.arange(indices.shape[0], device=indices.device).unsqueeze(1)
        invalid |= indices == rows
    return invalid


class _ConnectivityState(SubState):
    """Shared behaviour of input-network and zone connectivity."""

    # name -> (num_post attr, fan_in attr, num_pre attr); fan_in None = one-to-one
    PROJECTIONS: Dict[str, Tuple[str, Any, str]] = {}

    def __init__(self, params: ConnectivityParams, tensors: Dict[str, torch.Tensor]):
        self.params = params
        super().__init__(tensors)

    def field_specs(self) -> List[FieldSpec]:
        specs = []
        for name, (post, fan_in, _pre) in self.PROJECTIONS.items():
            num_post = getattr(self.params, post)
            shape = (num_post,) if fan_in is None else (num_post, getattr(self.params, fan_in))
            specs.append(FieldSpec(name, shape, torch.int32))
        return specs

    @classmethod
    def from_stream(cls, stream: Any, params: ConnectivityParams, device: str = "cpu"):
        """Read a connectivity state written by ``write_state``.

        Raises:
            CorruptStateError: If the stream is short or shaped differently
        """
        reader = as_reader(stream, device=device)
        shell = cls.__new__(cls)
        shell.params = params
        return cls(params, cls._read_fields(reader, shell.field_specs()))

    # ------------------------------------------------------------------
    # Reverse views
    # ------------------------------------------------------------------

    def presynaptic_count(self, projection: str) -> int:
        _post, _fan_in, pre = self.PROJECTIONS[projection]
        return getattr(self.params, pre)

    def divergence(self, projection: str) -> torch.Tensor:
        """Number of postsynaptic targets of every presynaptic cell."""
        table = self._tensors[projection]
        return torch.bincount(
            table.reshape(-1).long(), minlength=self.presynaptic_count(projection)
        )


class InNetConnectivityState(_ConnectivityState):
    """Topology of the shared input network (granular layer)."""

    PROJECTIONS = {
        "mf_to_gr": ("num_gr", "mf_per_gr", "num_mf"),
        "go_to_gr": ("num_gr", "go_per_gr", "num_go"),
        "mf_to_go": ("num_go", "mf_per_go", "num_mf"),
        "gr_to_go": ("num_go", "gr_per_go", "num_gr"),
        "go_to_go": ("num_go", "go_per_go", "num_go"),
        "gr_to_sc": ("num_sc", "gr_per_sc", "num_gr"),
    }

    @classmethod
    def generate(cls, params: ConnectivityParams, seed: int) -> "InNetConnectivityState":
        """Wire the input network from ``seed``."""
        gen = make_generator(seed)
        p = params
        tensors = {
            "mf_to_gr": sample_fan_in(p.num_gr, p.mf_per_gr, p.num_mf, gen),
            "go_to_gr": sample_fan_in(p.num_gr, p.go_per_gr, p.num_go, gen),
            "mf_to_go": sample_fan_in(p.num_go, p.mf_per_go, p.num_mf, gen),
            "gr_to_go": sample_fan_in(p.num_go, p.gr_per_go, p.num_gr, gen),
            "go_to_go": sample_fan_in(p.num_go, p.go_per_go, p.num_go, gen, exclude_self=True),
            "gr_to_sc": sample_fan_in(p.num_sc, p.gr_per_sc, p.num_gr, gen),
        }
        return cls(params, tensors)


class MZoneConnectivityState(_ConnectivityState):
    """Topology of one microzone (Purkinje, basket, nuclear and olivary cells)."""

    PROJECTIONS = {
        "gr_to_pc": ("num_pc", "gr_per_pc", "num_gr"),
        "gr_to_bc": ("num_bc", "gr_per_bc", "num_gr"),
        "bc_to_pc": ("num_pc", "bc_per_pc", "num_bc"),
        "sc_to_pc": ("num_pc", "sc_per_pc", "num_sc"),
        "pc_to_nc": ("num_nc", "pc_per_nc", "num_pc"),
        "mf_to_nc": ("num_nc", "mf_per_nc", "num_mf"),
        "nc_to_io": ("num_io", "nc_per_io", "num_nc"),
        "io_to_pc": ("num_pc", None, "num_io"),
    }

    @classmethod
    def generate(cls, params: ConnectivityParams, seed: int) -> "MZoneConnectivityState":
        """Wire one zone from ``seed``."""
        gen = make_generator(seed)
        p = params
        # Each climbing fiber covers a contiguous block of Purkinje cells
        io_to_pc = (torch.arange(p.num_pc) * p.num_io // p.num_pc).to(torch.int32)
        tensors = {
            "gr_to_pc": sample_fan_in(p.num_pc, p.gr_per_pc, p.num_gr, gen),
            "gr_to_bc": sample_fan_in(p.num_bc, p.gr_per_bc, p.num_gr, gen),
            "bc_to_pc": sample_fan_in(p.num_pc, p.bc_per_pc, p.num_bc, gen),
            "sc_to_pc": sample_fan_in(p.num_pc, p.sc_per_pc, p.num_sc, gen),
            "pc_to_nc": sample_fan_in(p.num_nc, p.pc_per_nc, p.num_pc, gen),
            "mf_to_nc": sample_fan_in(p.num_nc, p.mf_per_nc, p.num_mf, gen),
            "nc_to_io": sample_fan_in(p.num_io, p.nc_per_io, p.num_nc, gen),
            "io_to_pc": io_to_pc,
        }
        return cls(params, tensors)
