"""
Trial definitions - Expands a parsed trial section into an execution list.

A session file's trial section has three parts, already parsed into plain
maps by the (external) file parser:

    trial_map:  trial id -> {"use_cs": "1", "cs_onset": "2000", "cs_len": "500",
                             "cs_percent": "100", "use_us": "1", "us_onset": "2500"}
    block_map:  block id -> [(trial id, count), ...]
    session:    [(block or trial id, count), ...]

``translate_parsed_trials`` expands the session in order into one
``TrialSpec`` per trial to run.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Sequence, Tuple, Union

from cbmsim.config.base import parse_bool
from cbmsim.core.trial_controller import TrialSpec
from cbmsim.errors import ConfigurationError

Count = Union[int, str]

_REQUIRED_KEYS = ("use_cs", "cs_onset", "cs_len", "use_us", "us_onset")


def _count(value: Count, where: str) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{where}: count {value!r} is not an integer") from None
    if count < 0:
        raise ConfigurationError(f"{where}: count must be non-negative, got {count}")
    return count


def trial_spec_from_params(name: str, params: Mapping[str, Any]) -> TrialSpec:
    """Build one ``TrialSpec`` from a trial definition's parameter map."""
    missing = [key for key in _REQUIRED_KEYS if key not in params]
    if missing:
        raise ConfigurationError(f"Trial '{name}' is missing {missing}")
    try:
        cs_onset = int(params["cs_onset"])
        cs_len = int(params["cs_len"])
        spec = TrialSpec(
            name=name,
            use_cs=parse_bool(str(params["use_cs"])),
            cs_onset=cs_onset,
            cs_offset=cs_onset + cs_len,
            cs_percent=float(params.get("cs_percent", 100.0)),
            use_us=parse_bool(str(params["use_us"])),
            us_onset=int(params["us_onset"]),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Trial '{name}': {exc}") from exc
    if cs_onset < 0 or cs_len < 0:
        raise ConfigurationError(f"Trial '{name}': CS onset and length must be non-negative")
    if not 0.0 <= spec.cs_percent <= 100.0:
        raise ConfigurationError(f"Trial '{name}': cs_percent must be in [0, 100]")
    return spec


def translate_parsed_trials(
    trial_map: Mapping[str, Mapping[str, Any]],
    block_map: Mapping[str, Sequence[Tuple[str, Count]]],
    session: Sequence[Tuple[str, Count]],
) -> List[TrialSpec]:
    """Expand a session into the ordered list of trials to run.

    Session entries may name a block (expanded with its own counts) or a
    trial directly.

    Raises:
        ConfigurationError: On unknown ids, bad counts or bad trial parameters
    """
    specs = {name: trial_spec_from_params(name, params) for name, params in trial_map.items()}

    trials: List[TrialSpec] = []
    for entry_id, entry_count in session:
        repeats = _count(entry_count, f"session entry '{entry_id}'")
        if entry_id in block_map:
            block: List[TrialSpec] = []
            for trial_id, trial_count in block_map[entry_id]:
                if trial_id not in specs:
                    raise ConfigurationError(
                        f"Block '{entry_id}' references unknown trial '{trial_id}'"
                    )
                block.extend([specs[trial_id]] * _count(trial_count, f"block '{entry_id}'"))
            trials.extend(block * repeats)
        elif entry_id in specs:
            trials.extend([specs[entry_id]] * repeats)
        else:
            raise ConfigurationError(f"Session references unknown block or trial '{entry_id}'")
    return trials


def trials_from_dict(data: Mapping[str, Any]) -> List[TrialSpec]:
    """Expand a ``{"trials": ..., "blocks": ..., "session": ...}`` mapping (JSON)."""
    unknown = set(data) - {"trials", "blocks", "session"}
    if unknown:
        raise ConfigurationError(f"Unknown trial file keys: {sorted(unknown)}")
    blocks = {
        block_id: [tuple(entry) for entry in entries]
        for block_id, entries in data.get("blocks", {}).items()
    }
    session = [tuple(entry) for entry in data.get("session", [])]
    return translate_parsed_trials(data.get("trials", {}), blocks, session)


__all__ = ["trial_spec_from_params", "translate_parsed_trials", "trials_from_dict"]
