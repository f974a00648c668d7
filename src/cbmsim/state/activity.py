"""
Activity States - Dynamic variables of the input network and of each zone.

Activity state holds everything the kernel mutates every timestep: membrane
voltages, adaptive spike thresholds, synaptic conductances, last-step spikes,
and (in zones) the plastic PF→PC and MF→DCN weights and the climbing fiber
error drive.

The controller never inspects individual fields; it only creates, persists
and restores activity states wholesale. Field shapes are fully determined by
the connectivity parameters, so a stream written for a different network is
rejected on load.

Zone activity is plasticity-mode aware: BINARY and the cascade modes store a
discrete state per PF→PC synapse (``gr_pc_syn_state``) after the common fields.
OFF and GRADED store only the weights.
"""

from __future__ import annotations

from typing import Any, Dict, List

import torch

from cbmsim.config import ActivityParams, ConnectivityParams
from cbmsim.constants import PlasticityMode
from cbmsim.io.stream import as_reader
from cbmsim.state.base import FieldSpec, SubState
from cbmsim.state.seeds import make_generator

_SPIKE_DTYPE = torch.uint8


class _ActivityState(SubState):
    """Shared construction and reset logic for activity states."""

    # (field, population attr on ConnectivityParams, kind) in serialization order.
    # kind: "v" voltage, "thresh" threshold, "g" conductance, "ap" spikes
    CELL_FIELDS: List[tuple] = []

    def __init__(
        self,
        params: ConnectivityParams,
        activity: ActivityParams,
        tensors: Dict[str, torch.Tensor],
        float_dtype: torch.dtype = torch.float32,
    ):
        self.params = params
        self.activity = activity
        self.float_dtype = float_dtype
        super().__init__(tensors)

    def field_specs(self) -> List[FieldSpec]:
        specs = [
            FieldSpec(name, (getattr(self.params, pop),), self._dtype_for(kind))
            for name, pop, kind in self.CELL_FIELDS
        ]
        return specs + self._extra_specs()

    def _extra_specs(self) -> List[FieldSpec]:
        return []

    def _dtype_for(self, kind: str) -> torch.dtype:
        return _SPIKE_DTYPE if kind == "ap" else self.float_dtype

    def _resting_value(self, name: str, kind: str) -> float:
        if kind == "v":
            return self.activity.e_leak
        if kind == "thresh":
            return getattr(self.activity, "thresh_rest_" + name.split("_", 1)[1])
        return 0.0

    def _resting_tensors(self, device: str) -> Dict[str, torch.Tensor]:
        tensors = {}
        for name, pop, kind in self.CELL_FIELDS:
            size = getattr(self.params, pop)
            tensors[name] = torch.full(
                (size,), self._resting_value(name, kind), dtype=self._dtype_for(kind), device=device
            )
        return tensors

    def reset_dynamics(self) -> None:
        """Return voltages, thresholds, conductances and spikes to rest.

        Plastic weights and synapse states are preserved.
        """
        for name, _pop, kind in self.CELL_FIELDS:
            self._tensors[name].fill_(self._resting_value(name, kind))

    @classmethod
    def _shell(cls, params, activity, float_dtype, **extra):
        shell = cls.__new__(cls)
        shell.params = params
        shell.activity = activity
        shell.float_dtype = float_dtype
        for key, value in extra.items():
            setattr(shell, key, value)
        return shell


class InNetActivityState(_ActivityState):
    """Dynamic state of mossy fibers, granule, Golgi and stellate cells."""

    CELL_FIELDS = [
        ("ap_mf", "num_mf", "ap"),
        ("hist_mf", "num_mf", "ap"),
        ("v_gr", "num_gr", "v"),
        ("thresh_gr", "num_gr", "thresh"),
        ("g_mf_gr", "num_gr", "g"),
        ("g_go_gr", "num_gr", "g"),
        ("ap_gr", "num_gr", "ap"),
        ("v_go", "num_go", "v"),
        ("thresh_go", "num_go", "thresh"),
        ("g_mf_go", "num_go", "g"),
        ("g_gr_go", "num_go", "g"),
        ("g_go_go", "num_go", "g"),
        ("ap_go", "num_go", "ap"),
        ("v_sc", "num_sc", "v"),
        ("thresh_sc", "num_sc", "thresh"),
        ("g_gr_sc", "num_sc", "g"),
        ("ap_sc", "num_sc", "ap"),
    ]

    @classmethod
    def fresh(
        cls,
        params: ConnectivityParams,
        activity: ActivityParams,
        float_dtype: torch.dtype = torch.float32,
        device: str = "cpu",
    ) -> "InNetActivityState":
        """Input network at rest (deterministic, no seed needed)."""
        shell = cls._shell(params, activity, float_dtype)
        return cls(params, activity, shell._resting_tensors(device), float_dtype)

    @classmethod
    def from_stream(
        cls,
        stream: Any,
        params: ConnectivityParams,
        activity: ActivityParams,
        float_dtype: torch.dtype = torch.float32,
        device: str = "cpu",
    ) -> "InNetActivityState":
        """Read an input-network activity state written by ``write_state``."""
        shell = cls._shell(params, activity, float_dtype)
        tensors = cls._read_fields(as_reader(stream, device=device), shell.field_specs())
        return cls(params, activity, tensors, float_dtype)


class MZoneActivityState(_ActivityState):
    """Dynamic state and plastic weights of one microzone."""

    CELL_FIELDS = [
        ("v_bc", "num_bc", "v"),
        ("thresh_bc", "num_bc", "thresh"),
        ("g_gr_bc", "num_bc", "g"),
        ("ap_bc", "num_bc", "ap"),
        ("v_pc", "num_pc", "v"),
        ("thresh_pc", "num_pc", "thresh"),
        ("g_gr_pc", "num_pc", "g"),
        ("g_bc_pc", "num_pc", "g"),
        ("g_sc_pc", "num_pc", "g"),
        ("ap_pc", "num_pc", "ap"),
        ("v_nc", "num_nc", "v"),
        ("thresh_nc", "num_nc", "thresh"),
        ("g_pc_nc", "num_nc", "g"),
        ("g_mf_nc", "num_nc", "g"),
        ("ap_nc", "num_nc", "ap"),
        ("v_io", "num_io", "v"),
        ("thresh_io", "num_io", "thresh"),
        ("g_nc_io", "num_io", "g"),
        ("ap_io", "num_io", "ap"),
    ]

    def __init__(
        self,
        params: ConnectivityParams,
        activity: ActivityParams,
        plasticity: PlasticityMode,
        tensors: Dict[str, torch.Tensor],
        float_dtype: torch.dtype = torch.float32,
    ):
        self.plasticity = PlasticityMode(plasticity)
        super().__init__(params, activity, tensors, float_dtype)

    def _extra_specs(self) -> List[FieldSpec]:
        p = self.params
        specs = [
            FieldSpec("gr_pc_w", (p.num_pc, p.gr_per_pc), self.float_dtype),
            FieldSpec("mf_nc_w", (p.num_nc, p.mf_per_nc), self.float_dtype),
            FieldSpec("err_drive", (1,), self.float_dtype),
        ]
        if self.plasticity.has_synapse_states:
            specs.append(FieldSpec("gr_pc_syn_state", (p.num_pc, p.gr_per_pc), torch.uint8))
        return specs

    def _initial_tensors(self, device: str) -> Dict[str, torch.Tensor]:
        p, a = self.params, self.activity
        tensors = self._resting_tensors(device)
        tensors["gr_pc_w"] = torch.full(
            (p.num_pc, p.gr_per_pc), a.gr_pc_w_init, dtype=self.float_dtype, device=device
        )
        tensors["mf_nc_w"] = torch.full(
            (p.num_nc, p.mf_per_nc), a.mf_nc_w_init, dtype=self.float_dtype, device=device
        )
        tensors["err_drive"] = torch.zeros(1, dtype=self.float_dtype, device=device)
        if self.plasticity.has_synapse_states:
            tensors["gr_pc_syn_state"] = torch.ones(
                (p.num_pc, p.gr_per_pc), dtype=torch.uint8, device=device
            )
        return tensors

    @classmethod
    def fresh(
        cls,
        params: ConnectivityParams,
        activity: ActivityParams,
        plasticity: PlasticityMode = PlasticityMode.GRADED,
        float_dtype: torch.dtype = torch.float32,
        device: str = "cpu",
    ) -> "MZoneActivityState":
        """Zone at rest with uniform initial weights (deterministic)."""
        shell = cls._shell(params, activity, float_dtype, plasticity=PlasticityMode(plasticity))
        return cls(params, activity, plasticity, shell._initial_tensors(device), float_dtype)

    @classmethod
    def generate(
        cls,
        params: ConnectivityParams,
        activity: ActivityParams,
        seed: int,
        plasticity: PlasticityMode = PlasticityMode.GRADED,
        float_dtype: torch.dtype = torch.float32,
        device: str = "cpu",
    ) -> "MZoneActivityState":
        """Zone with seeded initial conditions.

        The seed jitters the inferior olive voltages (so olivary cells do not
        fire in lockstep) and, for modes with discrete synapse states, draws
        each PF→PC synapse's initial state with probability
        ``gr_pc_w_init / gr_pc_w_max``.
        """
        gen = make_generator(seed)
        state = cls.fresh(params, activity, plasticity, float_dtype, device)
        jitter = (torch.rand(params.num_io, generator=gen, dtype=torch.float64) * 2.0 - 1.0)
        state._tensors["v_io"] += (jitter * activity.io_jitter_mv).to(float_dtype).to(device)
        if state.plasticity.has_synapse_states:
            p_on = activity.gr_pc_w_init / activity.gr_pc_w_max if activity.gr_pc_w_max else 0.0
            draws = torch.rand((params.num_pc, params.gr_per_pc), generator=gen) < p_on
            state._tensors["gr_pc_syn_state"] = draws.to(torch.uint8).to(device)
            state._tensors["gr_pc_w"] = (
                draws.to(float_dtype).to(device) * activity.gr_pc_w_max
            )
        return state

    @classmethod
    def from_stream(
        cls,
        stream: Any,
        params: ConnectivityParams,
        activity: ActivityParams,
        plasticity: PlasticityMode = PlasticityMode.GRADED,
        float_dtype: torch.dtype = torch.float32,
        device: str = "cpu",
    ) -> "MZoneActivityState":
        """Read a zone activity state written with the same plasticity mode."""
        shell = cls._shell(params, activity, float_dtype, plasticity=PlasticityMode(plasticity))
        tensors = cls._read_fields(as_reader(stream, device=device), shell.field_specs())
        return cls(params, activity, plasticity, tensors, float_dtype)

    def reset_dynamics(self) -> None:
        super().reset_dynamics()
        self._tensors["err_drive"].zero_()

    def pfpc_weight_sample(self, count: int) -> torch.Tensor:
        """First ``count`` PF→PC weights in row-major order (copy)."""
        return self._tensors["gr_pc_w"].reshape(-1)[:count].clone()
