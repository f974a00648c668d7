"""
Trial Controller - Drives trials of discrete timesteps through a kernel.

A run is a strictly sequential series of trials; a trial is a strictly
sequential series of ``trial_time`` timesteps. Per timestep the controller:

1. decides the stimulus phase (background, CS phasic, CS tonic),
2. delivers the US (error drive) once, at the trial's US timestep,
3. draws mossy fiber spikes from the phase's rate table,
4. advances the kernel exactly one timestep (one blocking call),
5. validates and accumulates the exported spikes (spike sums, raster,
   CS-window Golgi counters and conductance sums),
6. yields once to the front end, which may set pause or cancel flags.

At the end of a trial it logs the wall time, computes and publishes firing
rates, blocks while paused, and resets the spike sums.

Window conventions (one for every code path):
- CS window is half-open ``[cs_onset, cs_offset)``.
- Spike sums: every timestep outside the CS window counts as non-CS.
- The end-of-CS report fires at ``ts == cs_offset`` (the first non-CS step
  after the CS), or after the last timestep when the CS runs to the end.
- The first ``cs_phasic_size`` timesteps of the CS use phasic rates, the
  rest of the CS uses tonic rates.

Failure semantics:
- ``KernelStepError`` (kernel failure or malformed export) aborts the run.
- Raster write failures are handled by the caller (``Control``); the loop
  itself never writes files.

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import torch

from cbmsim.config import SimulationConfig
from cbmsim.constants import CellType, ConductancePathway
from cbmsim.core.protocols import FrontEnd, KernelWeights, SimKernel, SpikeGenerator, StimulusSource
from cbmsim.core.spike_sums import (
    FiringRate,
    SpikeSumAccumulator,
    compute_firing_rates,
    mean_rate,
    median_rate,
    window_phase,
)
from cbmsim.errors import KernelStepError, check_export_length
from cbmsim.io.raster import RasterRecorder
from cbmsim.state.seeds import make_generator

logger = logging.getLogger(__name__)


class StimulusPhase(Enum):
    """Mossy fiber rate table in use at a timestep."""

    BACKGROUND = "background"
    CS_PHASIC = "cs_phasic"
    CS_TONIC = "cs_tonic"


def stimulus_phase(
    ts: int,
    cs_onset: int,
    cs_offset: int,
    phasic_size: int = 0,
    cs_active: bool = True,
) -> StimulusPhase:
    """Stimulus phase of timestep ``ts``.

    Args:
        ts: Timestep within the trial
        cs_onset: First CS timestep
        cs_offset: First timestep after the CS
        phasic_size: Leading CS timesteps that use phasic rates
        cs_active: Whether this trial presents the CS at all
    """
    if not cs_active or not cs_onset <= ts < cs_offset:
        return StimulusPhase.BACKGROUND
    if ts < cs_onset + phasic_size:
        return StimulusPhase.CS_PHASIC
    return StimulusPhase.CS_TONIC


@dataclass(frozen=True)
class TrialSpec:
    """Timing of one trial.

    Attributes:
        name: Trial definition name (for logs)
        use_cs: Whether the CS is presented
        cs_onset: First CS timestep
        cs_offset: First timestep after the CS
        cs_percent: Percentage of trials (0-100) that actually present the CS
        use_us: Whether the US is delivered
        us_onset: Timestep of US delivery
    """

    name: str
    use_cs: bool
    cs_onset: int
    cs_offset: int
    cs_percent: float = 100.0
    use_us: bool = False
    us_onset: int = 0

    @property
    def cs_length(self) -> int:
        return self.cs_offset - self.cs_onset


@dataclass(frozen=True)
class CSReport:
    """Golgi cell activity over the CS window of one trial."""

    trial: int
    go_mean_rate: float
    go_median_rate: float
    mean_g_grgo: float
    mean_g_mfgo: float
    gr_mf_ratio: float


@dataclass
class TrialResult:
    """Outcome of one trial."""

    trial: int
    name: str
    timesteps: int
    elapsed_seconds: float
    pre_tuning: bool = False
    completed: bool = True
    firing_rates: Optional[Dict[CellType, FiringRate]] = None
    cs_report: Optional[CSReport] = None


@dataclass
class RunSummary:
    """Outcome of ``run_trials`` or ``run_experiment``."""

    trials_completed: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    results: List[TrialResult] = field(default_factory=list)


class RunControl:
    """Pause and cancel flags plus the once-per-timestep front end yield.

    Flags may be set from the front end's ``process_pending_events`` (re-entrant,
    same thread) or from another thread.

    Args:
        front_end: Front end polled by ``yield_to_front_end``
        poll_interval: Seconds to sleep between polls while paused
    """

    def __init__(self, front_end: Optional[FrontEnd] = None, poll_interval: float = 0.01):
        self.front_end = front_end
        self.poll_interval = poll_interval
        self._paused = threading.Event()
        self._cancelled = threading.Event()

    def pause(self) -> None:
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    def cancel(self) -> None:
        self._cancelled.set()

    def clear(self) -> None:
        """Reset both flags before a new run."""
        self._paused.clear()
        self._cancelled.clear()

    @property
    def is_paused(self) -> bool:
        return self._paused.is_set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def yield_to_front_end(self) -> None:
        if self.front_end is not None:
            self.front_end.process_pending_events()

    def wait_while_paused(self) -> None:
        """Block, yielding to the front end, until resumed or cancelled."""
        if not self.is_paused:
            return
        logger.info("Simulation paused")
        while self.is_paused and not self.is_cancelled:
            self.yield_to_front_end()
            if self.is_paused and not self.is_cancelled and self.poll_interval > 0:
                time.sleep(self.poll_interval)
        logger.info("Simulation %s", "cancelled" if self.is_cancelled else "resumed")


class TrialController:
    """Runs trials of a kernel with a mossy fiber stimulus.

    Args:
        config: Simulation configuration
        kernel: Numerical kernel (``SimKernel``)
        stimulus: Rate tables (``StimulusSource``)
        poisson: Spike generator turning rates into MF spikes
        accumulator: Spike sums; defaults to one tracking every cell type
        front_end: Interactive front end, polled once per timestep
        raster: Raster recorder filled from trial ``pre_trial_number`` on
        run_control: Pause/cancel flags (created if not given)
        publish_rates: Compute firing rates at the end of every trial even
            without a front end or listener
        on_trial_end: Listener called with each ``TrialResult``
        seed: Seed of the per-trial CS on/off draw (``cs_percent``)
    """

    def __init__(
        self,
        config: SimulationConfig,
        kernel: SimKernel,
        stimulus: StimulusSource,
        poisson: SpikeGenerator,
        accumulator: Optional[SpikeSumAccumulator] = None,
        front_end: Optional[FrontEnd] = None,
        raster: Optional[RasterRecorder] = None,
        run_control: Optional[RunControl] = None,
        publish_rates: bool = False,
        on_trial_end: Optional[Callable[[TrialResult], None]] = None,
        seed: Optional[int] = None,
    ):
        self.config = config
        self.kernel = kernel
        self.stimulus = stimulus
        self.poisson = poisson
        if accumulator is None:
            accumulator = SpikeSumAccumulator(config.connectivity.cell_counts)
        self.accumulator = accumulator
        self.raster = raster
        self.run_control = run_control or RunControl(front_end)
        if front_end is not None:
            self.run_control.front_end = front_end
        self.publish_rates = publish_rates
        self.on_trial_end = on_trial_end
        self.weights = KernelWeights.from_activity(config.activity)

        counts = config.connectivity.cell_counts
        self._cell_counts = {ct: counts[ct.name] for ct in CellType}
        self._cs_generator = make_generator(seed if seed is not None else 0)

    # =====================================================================
    # RUNS
    # =====================================================================

    def run_trials(self) -> RunSummary:
        """Training run of ``num_total_trials`` trials from the configured timing.

        Trials below ``homeo_tuning_trials`` are pre-tuning trials and do not
        step the kernel. The US (``us_magnitude``) is delivered at the CS offset.
        """
        timing = self.config.timing
        spec = TrialSpec(
            name="training",
            use_cs=True,
            cs_onset=timing.cs_start,
            cs_offset=timing.cs_offset,
            use_us=True,
            us_onset=timing.cs_offset,
        )
        specs = [spec] * timing.num_total_trials
        return self._run(
            specs,
            phasic_size=timing.cs_phasic_size,
            us_magnitude=self.config.activity.us_magnitude,
            skip_pre_tuning=True,
        )

    def run_experiment(self, trials: Sequence[TrialSpec]) -> RunSummary:
        """Run explicit per-trial definitions.

        The CS uses tonic rates throughout when the trial presents it. The US
        sets a zero error drive (it marks the event without driving the
        climbing fibers).
        """
        return self._run(list(trials), phasic_size=0, us_magnitude=0.0, skip_pre_tuning=False)

    def _run(
        self,
        specs: List[TrialSpec],
        phasic_size: int,
        us_magnitude: float,
        skip_pre_tuning: bool,
    ) -> RunSummary:
        summary = RunSummary()
        start = time.perf_counter()
        homeo_trials = self.config.timing.homeo_tuning_trials

        for trial, spec in enumerate(specs):
            if self.run_control.is_cancelled:
                summary.cancelled = True
                break
            pre_tuning = skip_pre_tuning and trial < homeo_trials
            result = self.run_trial(
                trial,
                spec,
                phasic_size=phasic_size,
                us_magnitude=us_magnitude,
                pre_tuning=pre_tuning,
            )
            summary.results.append(result)
            if not result.completed:
                summary.cancelled = True
                break
            summary.trials_completed += 1

        summary.elapsed_seconds = time.perf_counter() - start
        logger.info(
            "Run finished: %d/%d trials in %.2f s%s",
            summary.trials_completed,
            len(specs),
            summary.elapsed_seconds,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    # =====================================================================
    # ONE TRIAL
    # =====================================================================

    def run_trial(
        self,
        trial: int,
        spec: TrialSpec,
        phasic_size: int = 0,
        us_magnitude: float = 0.0,
        pre_tuning: bool = False,
    ) -> TrialResult:
        """Run one trial and finish it (rates, pause, reset).

        Raises:
            KernelStepError: If the kernel fails or exports malformed data
        """
        timing = self.config.timing
        if pre_tuning:
            logger.info("Pre-tuning trial number: %d", trial + 1)
        else:
            logger.info("Post-tuning trial number: %d", trial + 1)

        start = time.perf_counter()
        self.accumulator.reset()
        cs_active = self._draw_cs_active(spec)
        steps = 0
        completed = True
        report: Optional[CSReport] = None

        if not pre_tuning:
            bg_rates = self.stimulus.background_rates()
            tonic_rates = self.stimulus.cs_tonic_rates()
            phasic_rates = self.stimulus.cs_phasic_rates() if phasic_size > 0 else tonic_rates
            rate_tables = {
                StimulusPhase.BACKGROUND: bg_rates,
                StimulusPhase.CS_TONIC: tonic_rates,
                StimulusPhase.CS_PHASIC: phasic_rates,
            }
            self.kernel.update_true_mfs(self.poisson.compute_true_mf_mask(bg_rates))

            record_raster = self.raster is not None and trial >= timing.pre_trial_number
            if record_raster:
                self.raster.reset()
            cs_window = _CSWindowSums(self._cell_counts[CellType.GO])

            for ts in range(timing.trial_time):
                if spec.use_us and ts == spec.us_onset:
                    self.kernel.update_error_drive(0, us_magnitude)

                phase = stimulus_phase(
                    ts, spec.cs_onset, spec.cs_offset, phasic_size, spec.use_cs and cs_active
                )
                mf_input = self.poisson.compute_poisson_activity(
                    rate_tables[phase], self.kernel.zones
                )
                self._step(mf_input)
                steps += 1

                spikes = self._export_spikes(record_raster)
                self.accumulator.record_timestep(
                    window_phase(ts, spec.cs_onset, spec.cs_offset), spikes
                )
                if spec.cs_onset <= ts < spec.cs_offset:
                    cs_window.add(
                        spikes[CellType.GO],
                        self._export_conductance(ConductancePathway.GR_GO),
                        self._export_conductance(ConductancePathway.MF_GO),
                    )
                if ts == spec.cs_offset:
                    report = self._report_cs(trial, cs_window, spec)
                if record_raster:
                    column = self.raster.column_for(ts)
                    if column is not None:
                        self.raster.record(column, spikes)

                self.run_control.yield_to_front_end()
                if self.run_control.is_cancelled:
                    completed = False
                    break

            if completed and report is None and spec.cs_length > 0:
                report = self._report_cs(trial, cs_window, spec)

        elapsed = time.perf_counter() - start
        logger.info("Trial time seconds: %.3f", elapsed)

        result = TrialResult(
            trial=trial,
            name=spec.name,
            timesteps=steps,
            elapsed_seconds=elapsed,
            pre_tuning=pre_tuning,
            completed=completed,
            cs_report=report,
        )
        if completed:
            self._finish_trial(result, spec)
        return result

    def _finish_trial(self, result: TrialResult, spec: TrialSpec) -> None:
        wants_rates = (
            self.publish_rates
            or self.on_trial_end is not None
            or self.run_control.front_end is not None
        )
        if wants_rates and not result.pre_tuning:
            result.firing_rates = compute_firing_rates(
                self.accumulator.snapshot(),
                non_cs_seconds=self.config.non_cs_seconds(spec.cs_length),
                cs_seconds=self.config.cs_seconds(spec.cs_length),
            )
        if self.on_trial_end is not None:
            self.on_trial_end(result)
        self.run_control.wait_while_paused()
        self.accumulator.reset()

    # =====================================================================
    # KERNEL PLUMBING
    # =====================================================================

    def _draw_cs_active(self, spec: TrialSpec) -> bool:
        draw = float(torch.rand(1, generator=self._cs_generator).item()) * 100.0
        return draw < spec.cs_percent

    def _step(self, mf_input: torch.Tensor) -> None:
        try:
            self.kernel.step_timestep(mf_input, self.weights)
        except KernelStepError:
            raise
        except Exception as exc:
            raise KernelStepError(f"Kernel step failed: {exc}") from exc

    def _export_spikes(self, record_raster: bool) -> Dict[CellType, torch.Tensor]:
        wanted = set(self.accumulator.cell_counts) | {CellType.GO}
        if record_raster:
            wanted |= set(self.raster.cell_counts)
            if self.raster.gr_sample is not None:
                wanted.add(CellType.GR)
        spikes = {}
        for cell_type in sorted(wanted):
            exported = self.kernel.export_spikes(cell_type)
            check_export_length(f"{cell_type.name} spikes", exported, self._cell_counts[cell_type])
            spikes[cell_type] = exported
        return spikes

    def _export_conductance(self, pathway: ConductancePathway) -> torch.Tensor:
        exported = self.kernel.export_conductance_sum(pathway)
        check_export_length(f"{pathway.value} conductance", exported, self._cell_counts[CellType.GO])
        return exported

    def _report_cs(self, trial: int, sums: "_CSWindowSums", spec: TrialSpec) -> CSReport:
        cs_seconds = self.config.cs_seconds(spec.cs_length)
        report = sums.report(trial, cs_seconds, spec.cs_length)
        logger.info(
            "Trial %d CS: mean GO rate %.3f Hz, median GO rate %.3f Hz",
            trial + 1,
            report.go_mean_rate,
            report.go_median_rate,
        )
        logger.info(
            "mean gGRGO = %.6f, mean gMFGO = %.6f, GR:MF ratio = %.4f",
            report.mean_g_grgo,
            report.mean_g_mfgo,
            report.gr_mf_ratio,
        )
        return report


class _CSWindowSums:
    """Golgi spike counters and conductance sums over the CS window."""

    def __init__(self, num_go: int):
        self.num_go = num_go
        self.go_counter = torch.zeros(num_go, dtype=torch.int64)
        self.g_grgo_sum = 0.0
        self.g_mfgo_sum = 0.0

    def add(self, go_spikes: torch.Tensor, g_grgo: torch.Tensor, g_mfgo: torch.Tensor) -> None:
        self.go_counter += (go_spikes.detach().to("cpu") != 0).to(torch.int64)
        self.g_grgo_sum += float(g_grgo.sum())
        self.g_mfgo_sum += float(g_mfgo.sum())

    def report(self, trial: int, cs_seconds: float, cs_length: int) -> CSReport:
        samples = self.num_go * cs_length
        return CSReport(
            trial=trial,
            go_mean_rate=mean_rate(int(self.go_counter.sum()), self.num_go, cs_seconds),
            go_median_rate=median_rate(self.go_counter, cs_seconds),
            mean_g_grgo=self.g_grgo_sum / samples if samples else 0.0,
            mean_g_mfgo=self.g_mfgo_sum / samples if samples else 0.0,
            gr_mf_ratio=self.g_grgo_sum / self.g_mfgo_sum if self.g_mfgo_sum else 0.0,
        )


__all__ = [
    "StimulusPhase",
    "stimulus_phase",
    "TrialSpec",
    "CSReport",
    "TrialResult",
    "RunSummary",
    "RunControl",
    "TrialController",
]
