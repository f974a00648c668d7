"""
Command line entry point.

Usage:
    cbmsim build --params params.json --out sim.bin [--seed 1234]
    cbmsim run --sim sim.bin [--params params.json] [--trials trials.json]
               [--out-dir out/] [--save-state state.bin] [--save-sim trained.bin]

``params.json`` holds ``connectivity``, ``activity``, ``stimulus`` and
``timing`` sections plus ``num_zones`` and ``plasticity``. ``trials.json``
holds ``trials``, ``blocks`` and ``session`` (see ``cbmsim.core.trials``).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from cbmsim.config import SimulationConfig
from cbmsim.core.control import Control
from cbmsim.core.trials import trials_from_dict
from cbmsim.errors import CbmSimError

logger = logging.getLogger("cbmsim")


def _load_config(path: Optional[str], seed: Optional[int] = None) -> SimulationConfig:
    config = SimulationConfig()
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            config = SimulationConfig.from_dict(json.load(f))
    if seed is not None:
        config = replace(config, seed=seed)
    return config


def cmd_build(args: argparse.Namespace) -> int:
    config = _load_config(args.params, args.seed)
    with Control.from_config(config) as control:
        if not control.save_sim_to_file(args.out):
            return 1
    logger.info("Wrote %s", args.out)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    config = _load_config(args.params, args.seed)
    with Control.from_sim_file(args.sim, config) as control:
        if args.trials is not None:
            with open(args.trials, "r", encoding="utf-8") as f:
                trials = trials_from_dict(json.load(f))
            summary = control.run_experiment(trials)
        else:
            summary = control.run_trials()
        if summary is None:
            return 1

        ok = True
        if args.out_dir is not None:
            out_dir = Path(args.out_dir)
            ok &= control.save_rasters(out_dir)
            ok &= control.save_weights(out_dir / "pfpcWeights.bin")
        if args.save_state is not None:
            ok &= control.save_sim_state_to_file(args.save_state)
        if args.save_sim is not None:
            ok &= control.save_sim_to_file(args.save_sim)
    return 0 if ok and not summary.cancelled else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cerebellar simulation", prog="cbmsim")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Generate a new simulation file")
    build.add_argument("--params", help="Parameter JSON (defaults if omitted)")
    build.add_argument("--out", required=True, help="Simulation file to write")
    build.add_argument("--seed", type=int, help="Master seed (clock-seeded if omitted)")
    build.set_defaults(func=cmd_build)

    run = subparsers.add_parser("run", help="Run trials on a simulation file")
    run.add_argument("--sim", required=True, help="Simulation file to load")
    run.add_argument("--params", help="Parameter JSON for zones, stimulus and timing")
    run.add_argument("--trials", help="Trial definition JSON (training run if omitted)")
    run.add_argument("--out-dir", help="Directory for rasters and PF→PC weights")
    run.add_argument("--save-state", help="State file to write after the run")
    run.add_argument("--save-sim", help="Simulation file to write after the run")
    run.add_argument("--seed", type=int, help="Master seed for stimulus draws")
    run.set_defaults(func=cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return args.func(args)
    except (CbmSimError, OSError, ValueError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
