"""
Simulation State - Owner of all connectivity and activity sub-states.

A ``SimulationState`` holds exactly one input-network pair (connectivity +
activity) and one ``Zone`` per microzone. It is the unit of persistence: the
state blob of a simulation file is the concatenation

    InNetConnectivity, InNetActivity, [ZoneConnectivity_i, ZoneActivity_i] for i in 0..num_zones-1

with no header. The number of zones and the plasticity mode are not in the
stream; they come from the ``SimulationConfig`` the caller supplies.

Lifecycle:
==========
- ``SimulationState.create(config)``: fresh generation. All seeds come from
  one ``RandomSeedProvider`` in a fixed order (InNet connectivity, then per
  zone: connectivity, activity), so one master seed reproduces the state.
- ``SimulationState.load(stream, config)``: strict sequential read. On any
  failure the sub-states read so far are dropped and ``CorruptStateError``
  propagates; no partially built state is ever returned. Data left after
  the last configured zone is a failure too, since it means the blob holds
  more zones than ``config.num_zones``.
- ``release()``: drops every sub-state. Afterwards the object is unusable and
  any outstanding non-owning references raise ``ReferenceError``.

Ownership:
==========
The state keeps the only strong references to its sub-states. Accessors hand
out ``weakref.proxy`` objects, which let a kernel read and update tensors but
cannot keep a sub-state alive past ``release()``.

Usage Example:
==============
```python
config = SimulationConfig(num_zones=2, seed=42)
with SimulationState.create(config) as state:
    with open("state.bin", "wb") as f:
        state.write_state(f)

with open("state.bin", "rb") as f:
    restored = SimulationState.load(f, config)
```

Author: cbmsim developers
Date: October 2026
"""

from __future__ import annotations

import io
import logging
import weakref
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from cbmsim.config import SimulationConfig
from cbmsim.constants import PlasticityMode
from cbmsim.errors import CorruptStateError, PreconditionViolation
from cbmsim.io.stream import StateWriter, as_reader, as_writer
from cbmsim.state.activity import InNetActivityState, MZoneActivityState
from cbmsim.state.connectivity import InNetConnectivityState, MZoneConnectivityState
from cbmsim.state.seeds import RandomSeedProvider

logger = logging.getLogger(__name__)


@dataclass
class Zone:
    """Connectivity and activity of one microzone, indexed together."""

    connectivity: MZoneConnectivityState
    activity: MZoneActivityState


class SimulationState:
    """Aggregate of the input-network state and ``num_zones`` zone states.

    Construct through ``create`` or ``load``; the initializer only adopts
    already-built sub-states.
    """

    def __init__(
        self,
        config: SimulationConfig,
        innet_connectivity: InNetConnectivityState,
        innet_activity: InNetActivityState,
        zones: List[Zone],
        plasticity: Optional[PlasticityMode] = None,
    ):
        if len(zones) != config.num_zones:
            raise CorruptStateError(
                f"SimulationState needs {config.num_zones} zones, got {len(zones)}"
            )
        self.config = config
        self.plasticity = PlasticityMode(plasticity if plasticity is not None else config.plasticity)
        self._innet_connectivity: Optional[InNetConnectivityState] = innet_connectivity
        self._innet_activity: Optional[InNetActivityState] = innet_activity
        self._zones: Optional[Tuple[Zone, ...]] = tuple(zones)

    # =====================================================================
    # CONSTRUCTION
    # =====================================================================

    @classmethod
    def create(
        cls,
        config: SimulationConfig,
        seeds: Optional[RandomSeedProvider] = None,
    ) -> "SimulationState":
        """Generate a fresh state.

        Args:
            config: Simulation configuration (sizes, zone count, plasticity)
            seeds: Seed source. Defaults to one seeded with ``config.seed``.
        """
        seeds = seeds if seeds is not None else RandomSeedProvider(config.seed)
        logger.debug("Generating simulation state (%d zones)...", config.num_zones)

        params = config.connectivity
        dtype = config.get_torch_dtype()
        device = config.device

        innet_con = InNetConnectivityState.generate(params, seeds.next_seed())
        innet_act = InNetActivityState.fresh(params, config.activity, dtype, device)

        zones = []
        for _ in range(config.num_zones):
            con_seed = seeds.next_seed()
            act_seed = seeds.next_seed()
            zones.append(
                Zone(
                    connectivity=MZoneConnectivityState.generate(params, con_seed),
                    activity=MZoneActivityState.generate(
                        params, config.activity, act_seed, config.plasticity, dtype, device
                    ),
                )
            )
        if device != "cpu":
            innet_con = _to_device(innet_con, device)
            for zone in zones:
                zone.connectivity = _to_device(zone.connectivity, device)

        logger.debug("Finished generating simulation state.")
        return cls(config, innet_con, innet_act, zones)

    @classmethod
    def load(
        cls,
        stream: Any,
        config: SimulationConfig,
        plasticity: Optional[PlasticityMode] = None,
        expect_eof: bool = True,
    ) -> "SimulationState":
        """Read a state blob in the fixed order.

        Args:
            stream: Binary file object or ``StateReader`` positioned at the blob
            config: Must match the configuration the blob was written with
            plasticity: Override of ``config.plasticity`` for zone activity
            expect_eof: Require the stream to end right after the last zone

        Raises:
            CorruptStateError: If the stream ends early, holds more zones than
                ``config.num_zones``, or a sub-state does not match the
                configured sizes. Nothing is returned in that case.
        """
        mode = PlasticityMode(plasticity if plasticity is not None else config.plasticity)
        logger.debug("Initializing simulation state from stream (%d zones)...", config.num_zones)
        innet_con, innet_act, zones = cls._read_sub_states(stream, config, mode, expect_eof)
        logger.debug("Finished initializing simulation state.")
        return cls(config, innet_con, innet_act, zones, mode)

    @staticmethod
    def _read_sub_states(
        stream: Any, config: SimulationConfig, mode: PlasticityMode, expect_eof: bool = False
    ):
        reader = as_reader(stream, device=config.device)
        params = config.connectivity
        dtype = config.get_torch_dtype()
        device = config.device

        innet_con = innet_act = None
        zones: List[Zone] = []
        section = "input network"
        try:
            innet_con = InNetConnectivityState.from_stream(reader, params, device)
            innet_act = InNetActivityState.from_stream(
                reader, params, config.activity, dtype, device
            )
            for i in range(config.num_zones):
                section = f"zone {i} of {config.num_zones}"
                con = MZoneConnectivityState.from_stream(reader, params, device)
                act = MZoneActivityState.from_stream(
                    reader, params, config.activity, mode, dtype, device
                )
                zones.append(Zone(con, act))
            if expect_eof and not reader.at_eof():
                section = f"after zone {config.num_zones - 1}"
                raise CorruptStateError(
                    f"stream has data past the state of {config.num_zones} zone(s); "
                    f"was it written with a different zone count?"
                )
        except CorruptStateError as exc:
            # The traceback pins this frame, so drop partial allocations first
            innet_con = innet_act = con = act = None
            zones.clear()
            raise CorruptStateError(f"{section}: {exc}") from None
        return innet_con, innet_act, zones

    # =====================================================================
    # PERSISTENCE
    # =====================================================================

    def write_state(self, stream: Any) -> int:
        """Write every sub-state in the fixed order. Returns bytes written."""
        self._check_alive()
        writer = as_writer(stream)
        written = self._innet_connectivity.write_state(writer)
        written += self._innet_activity.write_state(writer)
        for zone in self._zones:
            written += zone.connectivity.write_state(writer)
            written += zone.activity.write_state(writer)
        return written

    def read_state(self, stream: Any) -> None:
        """Replace every sub-state with the contents of ``stream``.

        The whole blob is read before anything is replaced, so a failed read
        leaves this state exactly as it was.

        Raises:
            CorruptStateError: If the stream is short or mismatched
        """
        self._check_alive()
        innet_con, innet_act, zones = self._read_sub_states(stream, self.config, self.plasticity)
        self._innet_connectivity = innet_con
        self._innet_activity = innet_act
        self._zones = tuple(zones)

    def to_bytes(self) -> bytes:
        """Serialized state blob."""
        buffer = io.BytesIO()
        self.write_state(StateWriter(buffer))
        return buffer.getvalue()

    def digest(self) -> str:
        """SHA-256 hex digest of the serialized state."""
        buffer = io.BytesIO()
        writer = StateWriter(buffer)
        self.write_state(writer)
        return writer.digest().hex()

    # =====================================================================
    # ACCESSORS (non-owning)
    # =====================================================================

    @property
    def num_zones(self) -> int:
        return self.config.num_zones

    @property
    def innet_connectivity(self) -> InNetConnectivityState:
        self._check_alive()
        return weakref.proxy(self._innet_connectivity)

    @property
    def innet_activity(self) -> InNetActivityState:
        self._check_alive()
        return weakref.proxy(self._innet_activity)

    def zone_connectivity(self, zone_index: int) -> MZoneConnectivityState:
        return weakref.proxy(self._zone(zone_index).connectivity)

    def zone_activity(self, zone_index: int) -> MZoneActivityState:
        return weakref.proxy(self._zone(zone_index).activity)

    @property
    def zones(self) -> Tuple[Zone, ...]:
        """Per-zone views holding non-owning references."""
        self._check_alive()
        return tuple(
            Zone(weakref.proxy(z.connectivity), weakref.proxy(z.activity)) for z in self._zones
        )

    def _zone(self, zone_index: int) -> Zone:
        self._check_alive()
        if not 0 <= zone_index < len(self._zones):
            raise IndexError(f"Zone index {zone_index} out of range [0, {len(self._zones)})")
        return self._zones[zone_index]

    # =====================================================================
    # LIFETIME
    # =====================================================================

    @property
    def is_released(self) -> bool:
        return self._zones is None

    def release(self) -> None:
        """Drop every owned sub-state. Safe to call more than once."""
        if self.is_released:
            return
        self._innet_connectivity = None
        self._innet_activity = None
        self._zones = None
        logger.debug("Released simulation state.")

    def _check_alive(self) -> None:
        if self.is_released:
            raise PreconditionViolation("SimulationState has been released")

    def __enter__(self) -> "SimulationState":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()

    # =====================================================================
    # COMPARISON
    # =====================================================================

    def equals(self, other: "SimulationState") -> bool:
        """Structural equality of every sub-state."""
        self._check_alive()
        other._check_alive()
        if self.num_zones != other.num_zones:
            return False
        if not self._innet_connectivity.equals(other._innet_connectivity):
            return False
        if not self._innet_activity.equals(other._innet_activity):
            return False
        return all(
            a.connectivity.equals(b.connectivity) and a.activity.equals(b.activity)
            for a, b in zip(self._zones, other._zones)
        )

    def connectivity_equals(self, other: "SimulationState") -> bool:
        """Equality of the topology only (activity may differ)."""
        self._check_alive()
        other._check_alive()
        return (
            self.num_zones == other.num_zones
            and self._innet_connectivity.equals(other._innet_connectivity)
            and all(
                a.connectivity.equals(b.connectivity) for a, b in zip(self._zones, other._zones)
            )
        )

    def __repr__(self) -> str:
        status = "released" if self.is_released else f"{self.num_zones} zones"
        return f"SimulationState({status}, plasticity={self.plasticity.name})"


def _to_device(state, device: str):
    tensors = {name: tensor.to(device) for name, tensor in state.fields()}
    return type(state)(state.params, tensors)
