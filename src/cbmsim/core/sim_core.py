"""
SimCore - Reference torch kernel for the cerebellar network.

``SimCore`` advances a ``SimulationState`` one timestep at a time. It is a
compact conductance-based integrate-and-fire model meant to make runs,
snapshots and tests work end to end; it is not a calibrated model of
cerebellar physiology.

Per timestep (``step_timestep``):
1. Mossy fiber spikes are copied into the input-network activity.
2. Conductances decay with ``tau_exc`` / ``tau_inh`` and receive this step's
   presynaptic spikes through the fan-in tables (previous-step spikes for
   recurrent pathways).
3. Membranes integrate leak + excitatory + inhibitory drive; cells above their
   adaptive threshold spike, and the threshold jumps to ``thresh_max`` and
   relaxes back to rest with ``thresh_decay_tau``.
4. In every zone, a Purkinje cell whose climbing fiber fired depresses the
   PF→PC synapses of active granule cells (LTD); without a climbing fiber
   spike, active synapses potentiate (LTP). ``PlasticityMode.OFF`` freezes
   the weights.

The kernel never caches sub-state references: every step fetches fresh
non-owning views from the state, so a ``read_state`` on the owning
``SimulationState`` is picked up on the next step.

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

import logging
import math
from typing import Any, List, Optional

import torch

from cbmsim.config import SimulationConfig
from cbmsim.constants import CellType, ConductancePathway, PlasticityMode
from cbmsim.core.protocols import KernelWeights
from cbmsim.errors import KernelStepError, PreconditionViolation, check_export_length
from cbmsim.state.simulation_state import SimulationState

logger = logging.getLogger(__name__)

_INNET_SPIKES = {
    CellType.MF: "ap_mf",
    CellType.GR: "ap_gr",
    CellType.GO: "ap_go",
    CellType.SC: "ap_sc",
}
_ZONE_SPIKES = {
    CellType.BC: "ap_bc",
    CellType.PC: "ap_pc",
    CellType.IO: "ap_io",
    CellType.DCN: "ap_nc",
}
_CONDUCTANCES = {
    ConductancePathway.MF_GO: "g_mf_go",
    ConductancePathway.GR_GO: "g_gr_go",
    ConductancePathway.MF_GR: "g_mf_gr",
    ConductancePathway.GO_GR: "g_go_gr",
}


def _gather_sum(spikes: torch.Tensor, table: torch.Tensor) -> torch.Tensor:
    """Sum of presynaptic activity over each row of a fan-in table."""
    return spikes[table.long()].sum(dim=1)


class SimCore:
    """Reference kernel stepping a ``SimulationState`` in place.

    Args:
        state: Owning simulation state (the kernel only borrows it)
        config: Configuration the state was built with
    """

    def __init__(self, state: SimulationState, config: Optional[SimulationConfig] = None):
        self._state = state
        self.config = config if config is not None else state.config
        self.plasticity = PlasticityMode(state.plasticity)
        a = self.config.activity
        dt = a.ms_per_timestep
        self._exc_decay = math.exp(-dt / a.tau_exc)
        self._inh_decay = math.exp(-dt / a.tau_inh)
        self._thresh_decay = math.exp(-dt / a.thresh_decay_tau)
        self._true_mfs = torch.ones(self.config.connectivity.num_mf, dtype=torch.bool)
        self._steps = 0

    # =====================================================================
    # INPUT
    # =====================================================================

    def update_true_mfs(self, is_true_mf: torch.Tensor) -> None:
        """Mark which mossy fibers carry rate-coded input (drive Golgi cells)."""
        check_export_length("true MF mask", is_true_mf, self.config.connectivity.num_mf)
        self._true_mfs = is_true_mf.detach().to("cpu", torch.bool)

    def update_mf_input(self, mf_spikes: torch.Tensor) -> None:
        check_export_length("MF input", mf_spikes, self.config.connectivity.num_mf)
        act = self._state.innet_activity
        act.hist_mf.copy_(act.ap_mf)
        act.ap_mf.copy_(mf_spikes.detach().to(act.ap_mf.device, torch.uint8))

    def update_error_drive(self, zone: int, magnitude: float) -> None:
        """Set the climbing fiber error drive of ``zone`` for the next step."""
        self._state.zone_activity(zone).err_drive.fill_(magnitude)

    # =====================================================================
    # STEP
    # =====================================================================

    def step_timestep(self, mf_input: torch.Tensor, weights: KernelWeights) -> None:
        """Advance the whole network one timestep.

        Raises:
            KernelStepError: If the input has the wrong length or the state
                was released underneath the kernel
        """
        try:
            self.update_mf_input(mf_input)
            self._step_innet(weights)
            for zone_index in range(self._state.num_zones):
                self._step_zone(zone_index)
        except (ReferenceError, PreconditionViolation) as exc:
            raise KernelStepError(f"Simulation state released during step: {exc}") from exc
        self._steps += 1

    def _integrate(
        self,
        v: torch.Tensor,
        thresh: torch.Tensor,
        g_exc: torch.Tensor,
        g_inh: Optional[torch.Tensor],
        thresh_rest: float,
    ) -> torch.Tensor:
        a = self.config.activity
        drive = a.g_leak * (a.e_leak - v) + g_exc * (a.e_exc - v)
        if g_inh is not None:
            drive = drive + g_inh * (a.e_inh - v)
        v.add_(drive).clamp_(min=a.e_inh, max=a.e_exc)
        thresh.sub_((thresh - thresh_rest) * (1.0 - self._thresh_decay))
        spikes = v > thresh
        thresh[spikes] = a.thresh_max
        return spikes.to(torch.uint8)

    def _step_innet(self, w: KernelWeights) -> None:
        a = self.config.activity
        con = self._state.innet_connectivity
        act = self._state.innet_activity
        dtype = act.v_gr.dtype

        mf = act.ap_mf.to(dtype)
        gr_prev = act.ap_gr.to(dtype)
        go_prev = act.ap_go.to(dtype)
        true_mf = mf * self._true_mfs.to(mf.device, dtype)

        act.g_mf_gr.mul_(self._exc_decay).add_(a.mf_gr_w * _gather_sum(mf, con.mf_to_gr))
        act.g_go_gr.mul_(self._inh_decay).add_(w.gogr * _gather_sum(go_prev, con.go_to_gr))
        act.g_mf_go.mul_(self._exc_decay).add_(
            w.mfgo * (1.0 + w.spill_frac) * _gather_sum(true_mf, con.mf_to_go)
        )
        act.g_gr_go.mul_(self._exc_decay).add_(w.grgo * _gather_sum(gr_prev, con.gr_to_go))
        act.g_go_go.mul_(self._inh_decay).add_(w.gogo * _gather_sum(go_prev, con.go_to_go))
        act.g_gr_sc.mul_(self._exc_decay).add_(a.gr_sc_w * _gather_sum(gr_prev, con.gr_to_sc))

        act.ap_gr.copy_(
            self._integrate(act.v_gr, act.thresh_gr, act.g_mf_gr, act.g_go_gr, a.thresh_rest_gr)
        )
        act.ap_go.copy_(
            self._integrate(
                act.v_go, act.thresh_go, act.g_mf_go + act.g_gr_go, act.g_go_go, a.thresh_rest_go
            )
        )
        act.ap_sc.copy_(
            self._integrate(act.v_sc, act.thresh_sc, act.g_gr_sc, None, a.thresh_rest_sc)
        )

    def _step_zone(self, zone_index: int) -> None:
        a = self.config.activity
        innet = self._state.innet_activity
        con = self._state.zone_connectivity(zone_index)
        act = self._state.zone_activity(zone_index)
        dtype = act.v_pc.dtype

        gr = innet.ap_gr.to(dtype)
        sc = innet.ap_sc.to(dtype)
        mf = innet.ap_mf.to(dtype)
        bc_prev = act.ap_bc.to(dtype)
        pc_prev = act.ap_pc.to(dtype)
        nc_prev = act.ap_nc.to(dtype)

        gr_at_pc = gr[con.gr_to_pc.long()]
        act.g_gr_pc.mul_(self._exc_decay).add_((gr_at_pc * act.gr_pc_w).mean(dim=1))
        act.g_gr_bc.mul_(self._exc_decay).add_(a.gr_bc_w * _gather_sum(gr, con.gr_to_bc))
        act.g_bc_pc.mul_(self._inh_decay).add_(a.bc_pc_w * _gather_sum(bc_prev, con.bc_to_pc))
        act.g_sc_pc.mul_(self._inh_decay).add_(a.sc_pc_w * _gather_sum(sc, con.sc_to_pc))
        act.g_pc_nc.mul_(self._inh_decay).add_(a.pc_nc_w * _gather_sum(pc_prev, con.pc_to_nc))
        act.g_mf_nc.mul_(self._exc_decay).add_(
            (mf[con.mf_to_nc.long()] * act.mf_nc_w).sum(dim=1)
        )
        act.g_nc_io.mul_(self._inh_decay).add_(a.nc_io_w * _gather_sum(nc_prev, con.nc_to_io))

        act.ap_bc.copy_(self._integrate(act.v_bc, act.thresh_bc, act.g_gr_bc, None, a.thresh_rest_bc))
        act.ap_pc.copy_(
            self._integrate(
                act.v_pc, act.thresh_pc, act.g_gr_pc, act.g_bc_pc + act.g_sc_pc, a.thresh_rest_pc
            )
        )
        act.ap_nc.copy_(
            self._integrate(act.v_nc, act.thresh_nc, act.g_mf_nc, act.g_pc_nc, a.thresh_rest_nc)
        )
        io_drive = act.err_drive.expand_as(act.v_io)
        act.ap_io.copy_(
            self._integrate(act.v_io, act.thresh_io, io_drive, act.g_nc_io, a.thresh_rest_io)
        )
        act.err_drive.zero_()

        if self.plasticity != PlasticityMode.OFF:
            self._update_pfpc(act, con, gr_at_pc)

    def _update_pfpc(self, act: Any, con: Any, gr_at_pc: torch.Tensor) -> None:
        a = self.config.activity
        cf = act.ap_io[con.io_to_pc.long()].to(gr_at_pc.dtype).unsqueeze(1)
        delta = gr_at_pc * (cf * a.gr_pc_ltd_step + (1.0 - cf) * a.gr_pc_ltp_step)
        act.gr_pc_w.add_(delta).clamp_(min=0.0, max=a.gr_pc_w_max)
        if self.plasticity.has_synapse_states:
            potentiated = act.gr_pc_w >= 0.5 * a.gr_pc_w_max
            act.gr_pc_syn_state.copy_(potentiated.to(torch.uint8))
            if self.plasticity == PlasticityMode.BINARY:
                act.gr_pc_w.copy_(potentiated.to(act.gr_pc_w.dtype) * a.gr_pc_w_max)

    # =====================================================================
    # EXPORTS
    # =====================================================================

    def export_spikes(self, cell_type: CellType, zone: int = 0) -> torch.Tensor:
        """Spikes of the last step for ``cell_type`` (copy, uint8)."""
        cell_type = CellType(cell_type)
        if cell_type in _INNET_SPIKES:
            return getattr(self._state.innet_activity, _INNET_SPIKES[cell_type]).clone()
        return getattr(self._state.zone_activity(zone), _ZONE_SPIKES[cell_type]).clone()

    def export_conductance_sum(self, pathway: ConductancePathway) -> torch.Tensor:
        """Per-cell summed conductance of ``pathway`` (copy)."""
        name = _CONDUCTANCES[ConductancePathway(pathway)]
        return getattr(self._state.innet_activity, name).clone()

    @property
    def zones(self) -> List[Any]:
        """Non-owning zone activity views (``ap_nc`` feeds MF collaterals)."""
        return [self._state.zone_activity(i) for i in range(self._state.num_zones)]

    @property
    def steps(self) -> int:
        """Timesteps advanced since construction."""
        return self._steps

    # =====================================================================
    # STATE
    # =====================================================================

    def write_state(self, stream: Any) -> int:
        return self._state.write_state(stream)

    def read_state(self, stream: Any) -> None:
        self._state.read_state(stream)

    def __repr__(self) -> str:
        return (
            f"SimCore(zones={self._state.num_zones}, plasticity={self.plasticity.name}, "
            f"steps={self._steps})"
        )
