"""
Unit tests for the trial controller.

A scripted fake kernel stands in for the numerical kernel so every spike,
US delivery and front end call can be checked against the timestep it
happened on.

Tests:
- Stimulus phases per timestep (background, phasic, tonic)
- US delivered once per trial at its timestep
- Spike sums, CS report and firing rates of a trial
- Pause / resume / cancel through the front end yield
- Kernel failures and malformed exports abort the run
"""

from dataclasses import replace
from types import SimpleNamespace

import pytest
import torch

from cbmsim.constants import CellType, ConductancePathway
from cbmsim.core.protocols import FrontEnd, SimKernel
from cbmsim.core.trial_controller import (
    RunControl,
    StimulusPhase,
    TrialController,
    TrialSpec,
    stimulus_phase,
)
from cbmsim.errors import KernelStepError
from cbmsim.io.raster import RasterRecorder


class FakeKernel:
    """Kernel whose exported spikes follow a script keyed by (cell type, ts)."""

    def __init__(self, config, script=None, fail_at=None, bad_export=None):
        self.config = config
        self.counts = {ct: config.connectivity.cell_counts[ct.name] for ct in CellType}
        self.script = script or {}
        self.fail_at = fail_at
        self.bad_export = bad_export
        self.steps = 0
        self.error_drives = []
        self.true_mfs = None
        self._zones = [
            SimpleNamespace(ap_nc=torch.zeros(config.connectivity.num_nc, dtype=torch.uint8))
            for _ in range(config.num_zones)
        ]

    @property
    def zones(self):
        return self._zones

    def update_true_mfs(self, is_true_mf):
        self.true_mfs = is_true_mf

    def step_timestep(self, mf_input, weights):
        if self.fail_at is not None and self.steps == self.fail_at:
            raise RuntimeError("device lost")
        self.steps += 1

    def export_spikes(self, cell_type, zone=0):
        n = self.counts[cell_type] - (1 if cell_type == self.bad_export else 0)
        spikes = torch.zeros(n, dtype=torch.uint8)
        for cell in self.script.get((cell_type, self.steps - 1), ()):
            spikes[cell] = 1
        return spikes

    def export_conductance_sum(self, pathway):
        return torch.ones(self.counts[CellType.GO])

    def update_error_drive(self, zone, magnitude):
        self.error_drives.append((self.steps, zone, magnitude))

    def write_state(self, stream):
        return 0


class FakeStimulus:
    """Rate tables tagged by value: background 0, tonic 1, phasic 2."""

    def __init__(self, num_mf):
        self.num_mf = num_mf

    def background_rates(self):
        return torch.zeros(self.num_mf)

    def cs_tonic_rates(self):
        return torch.full((self.num_mf,), 1.0)

    def cs_phasic_rates(self):
        return torch.full((self.num_mf,), 2.0)


class FakePoisson:
    """Records which rate table was used at every timestep."""

    PHASES = {0.0: StimulusPhase.BACKGROUND, 1.0: StimulusPhase.CS_TONIC, 2.0: StimulusPhase.CS_PHASIC}

    def __init__(self, num_mf):
        self.num_mf = num_mf
        self.phases = []

    def compute_poisson_activity(self, rates, zones):
        self.phases.append(self.PHASES[float(rates[0])])
        return torch.zeros(self.num_mf, dtype=torch.uint8)

    def compute_true_mf_mask(self, rates):
        return torch.ones(self.num_mf, dtype=torch.bool)


class ScriptedFrontEnd:
    """Front end that runs an action on selected calls of process_pending_events."""

    def __init__(self, actions=None):
        self.calls = 0
        self.actions = actions or {}
        self.controller = None

    def process_pending_events(self):
        self.calls += 1
        action = self.actions.get(self.calls)
        if action is not None:
            action(self)


def _controller(config, kernel=None, front_end=None, **kwargs):
    num_mf = config.connectivity.num_mf
    kernel = kernel or FakeKernel(config)
    controller = TrialController(
        config,
        kernel,
        FakeStimulus(num_mf),
        FakePoisson(num_mf),
        front_end=front_end,
        run_control=RunControl(front_end, poll_interval=0.0),
        **kwargs,
    )
    return controller, kernel


def _spec(**overrides):
    spec = TrialSpec(name="cs_only", use_cs=True, cs_onset=5, cs_offset=11)
    return replace(spec, **overrides)


@pytest.mark.unit
class TestStimulusPhase:
    """Test the per-timestep stimulus phase."""

    def test_phasic_then_tonic(self):
        phases = [stimulus_phase(ts, 5, 11, phasic_size=2) for ts in range(4, 12)]
        assert phases == [
            StimulusPhase.BACKGROUND,
            StimulusPhase.CS_PHASIC,
            StimulusPhase.CS_PHASIC,
            StimulusPhase.CS_TONIC,
            StimulusPhase.CS_TONIC,
            StimulusPhase.CS_TONIC,
            StimulusPhase.CS_TONIC,
            StimulusPhase.BACKGROUND,
        ]

    def test_inactive_cs_is_background(self):
        assert stimulus_phase(6, 5, 11, cs_active=False) is StimulusPhase.BACKGROUND


@pytest.mark.unit
class TestProtocols:
    """Test that the fakes satisfy the structural protocols."""

    def test_fakes_are_protocol_instances(self, small_config):
        assert isinstance(FakeKernel(small_config), SimKernel)
        assert isinstance(ScriptedFrontEnd(), FrontEnd)


@pytest.mark.unit
class TestTrialLoop:
    """Test one trial end to end."""

    def test_experiment_trial_uses_tonic_rates(self, small_config):
        controller, kernel = _controller(small_config)
        summary = controller.run_experiment([_spec()])

        assert summary.trials_completed == 1
        assert kernel.steps == small_config.timing.trial_time
        expected = [
            StimulusPhase.CS_TONIC if 5 <= ts < 11 else StimulusPhase.BACKGROUND
            for ts in range(20)
        ]
        assert controller.poisson.phases == expected

    def test_training_trials_use_phasic_onset(self, small_config):
        controller, _kernel = _controller(small_config)
        controller.run_trials()
        first_trial = controller.poisson.phases[:20]
        assert first_trial[5:7] == [StimulusPhase.CS_PHASIC] * 2
        assert first_trial[7:11] == [StimulusPhase.CS_TONIC] * 4

    def test_cs_percent_zero_presents_no_cs(self, small_config):
        controller, _kernel = _controller(small_config)
        controller.run_experiment([_spec(cs_percent=0.0)])
        assert set(controller.poisson.phases) == {StimulusPhase.BACKGROUND}

    def test_us_delivered_once_at_offset(self, small_config):
        controller, kernel = _controller(small_config)
        controller.run_trials()
        us = small_config.activity.us_magnitude
        assert kernel.error_drives == [(11, 0, us), (31, 0, us)]

    def test_experiment_us_has_zero_magnitude(self, small_config):
        controller, kernel = _controller(small_config)
        controller.run_experiment([_spec(use_us=True, us_onset=8)])
        assert kernel.error_drives == [(8, 0, 0.0)]

    def test_pre_tuning_trials_do_not_step(self, small_config):
        config = replace(small_config, timing=replace(small_config.timing, homeo_tuning_trials=1))
        controller, kernel = _controller(config)
        summary = controller.run_trials()
        assert summary.trials_completed == 3
        assert summary.results[0].pre_tuning
        assert summary.results[0].timesteps == 0
        assert kernel.steps == 2 * config.timing.trial_time

    def test_true_mf_mask_updated(self, small_config):
        controller, kernel = _controller(small_config)
        controller.run_experiment([_spec()])
        assert kernel.true_mfs is not None and bool(kernel.true_mfs.all())


@pytest.mark.unit
class TestTrialStatistics:
    """Test spike sums, rates and the CS report of a trial."""

    def _golgi_script(self):
        return {(CellType.GO, ts): [0] for ts in (1, 5, 7, 9, 15)}

    def test_golgi_spike_sums_and_rates(self, small_config):
        seen = {}

        def on_trial_end(result):
            go = controller.accumulator[CellType.GO]
            seen["cs"] = go.cs_spike_sum
            seen["non_cs"] = go.non_cs_spike_sum
            seen["result"] = result

        kernel = FakeKernel(small_config, script=self._golgi_script())
        controller, _ = _controller(small_config, kernel=kernel, on_trial_end=on_trial_end)
        controller.run_experiment([_spec()])

        assert seen["cs"] == 3
        assert seen["non_cs"] == 2
        rates = seen["result"].firing_rates[CellType.GO]
        assert rates.cs_mean == pytest.approx(3 / (0.006 * 16))
        assert rates.non_cs_mean == pytest.approx(2 / (0.014 * 16))
        # Sums are cleared once the trial is finished
        assert controller.accumulator[CellType.GO].cs_spike_sum == 0

    def test_cs_report(self, small_config):
        kernel = FakeKernel(small_config, script=self._golgi_script())
        controller, _ = _controller(small_config, kernel=kernel)
        summary = controller.run_experiment([_spec()])

        report = summary.results[0].cs_report
        assert report.trial == 0
        assert report.go_mean_rate == pytest.approx(3 / (0.006 * 16))
        assert report.go_median_rate == 0.0
        assert report.mean_g_grgo == pytest.approx(1.0)
        assert report.mean_g_mfgo == pytest.approx(1.0)
        assert report.gr_mf_ratio == pytest.approx(1.0)

    def test_rates_skipped_without_listener(self, small_config):
        controller, _ = _controller(small_config)
        summary = controller.run_experiment([_spec()])
        assert summary.results[0].firing_rates is None

    def test_raster_records_window(self, small_config):
        raster = RasterRecorder(small_config)
        kernel = FakeKernel(small_config, script={(CellType.PC, 5): [1], (CellType.PC, 1): [1]})
        controller, _ = _controller(small_config, kernel=kernel, raster=raster)
        controller.run_experiment([_spec()])

        pc = raster.buffers[CellType.PC]
        # Column 0 is timestep cs_start - ms_pre_cs = 2
        assert int(pc.sum()) == 1
        assert int(pc[1, 3]) == 1


@pytest.mark.unit
class TestRunControl:
    """Test pause, resume and cancel."""

    def test_pause_blocks_at_trial_end_until_resumed(self, small_config):
        steps_when_paused = []

        def pause(fe):
            fe.controller.run_control.pause()

        def check_then_resume(fe):
            steps_when_paused.append(fe.controller.kernel.steps)
            fe.controller.run_control.resume()

        front_end = ScriptedFrontEnd({5: pause, 23: check_then_resume})
        controller, kernel = _controller(small_config, front_end=front_end)
        front_end.controller = controller
        summary = controller.run_trials()

        assert summary.trials_completed == 2
        assert not summary.cancelled
        # Trial 0 finishes all 20 steps before the pause takes effect
        assert steps_when_paused == [20]
        assert front_end.calls == 2 * 20 + 3
        assert kernel.steps == 40

    def test_cancel_stops_after_current_timestep(self, small_config):
        front_end = ScriptedFrontEnd({7: lambda fe: fe.controller.run_control.cancel()})
        controller, kernel = _controller(small_config, front_end=front_end)
        front_end.controller = controller
        summary = controller.run_trials()

        assert summary.cancelled
        assert summary.trials_completed == 0
        assert len(summary.results) == 1
        assert not summary.results[0].completed
        assert summary.results[0].timesteps == 7
        assert kernel.steps == 7

    def test_cancel_releases_pause(self):
        control = RunControl(poll_interval=0.0)
        control.pause()
        control.cancel()
        control.wait_while_paused()
        assert control.is_paused and control.is_cancelled

    def test_clear_resets_flags(self):
        control = RunControl()
        control.pause()
        control.cancel()
        control.clear()
        assert not control.is_paused and not control.is_cancelled


@pytest.mark.unit
class TestKernelFailures:
    """Test that kernel failures abort the run."""

    def test_step_exception_wrapped(self, small_config):
        controller, _ = _controller(small_config, kernel=FakeKernel(small_config, fail_at=3))
        with pytest.raises(KernelStepError, match="device lost"):
            controller.run_trials()

    def test_short_export_raises(self, small_config):
        kernel = FakeKernel(small_config, bad_export=CellType.GO)
        controller, _ = _controller(small_config, kernel=kernel)
        with pytest.raises(KernelStepError, match="GO spikes"):
            controller.run_experiment([_spec()])

    def test_short_conductance_export_raises(self, small_config):
        kernel = FakeKernel(small_config)
        kernel.export_conductance_sum = lambda pathway: torch.ones(3)
        controller, _ = _controller(small_config, kernel=kernel)
        with pytest.raises(KernelStepError, match=ConductancePathway.GR_GO.value):
            controller.run_experiment([_spec()])
