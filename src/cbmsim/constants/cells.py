"""
Cell population and plasticity identifiers.

The order of ``CellType`` members is the order of the spike-sum and
firing-rate tables and of the per-type raster files.
"""

from __future__ import annotations

from enum import Enum, IntEnum


class CellType(IntEnum):
    """Cerebellar cell populations tracked by the simulator."""

    MF = 0  # mossy fibers
    GR = 1  # granule cells
    GO = 2  # Golgi cells
    BC = 3  # basket cells
    SC = 4  # stellate cells
    PC = 5  # Purkinje cells
    IO = 6  # inferior olive cells
    DCN = 7  # deep cerebellar nuclei

    @property
    def in_zone(self) -> bool:
        """True for populations that belong to a microzone, not the input net."""
        return self in ZONE_CELL_TYPES


ZONE_CELL_TYPES = frozenset({CellType.BC, CellType.PC, CellType.IO, CellType.DCN})
INNET_CELL_TYPES = frozenset({CellType.MF, CellType.GR, CellType.GO, CellType.SC})

NUM_CELL_TYPES = len(CellType)


class PlasticityMode(IntEnum):
    """Synaptic learning-rule variant of the PF→PC synapses.

    The mode selects which extra fields a zone activity state persists.
    It is never stored in the stream itself; callers supply it when loading.
    """

    OFF = 0
    GRADED = 1
    BINARY = 2
    ABBOTT_CASCADE = 3
    MAURO_CASCADE = 4

    @property
    def has_synapse_states(self) -> bool:
        """Whether PF→PC synapses carry a discrete state alongside the weight."""
        return self in (
            PlasticityMode.BINARY,
            PlasticityMode.ABBOTT_CASCADE,
            PlasticityMode.MAURO_CASCADE,
        )

    @classmethod
    def from_name(cls, name: str) -> "PlasticityMode":
        """Look up a mode by case-insensitive name ("graded", "BINARY", ...)."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            valid = ", ".join(m.name.lower() for m in cls)
            raise ValueError(f"Unknown plasticity mode '{name}'. Choose from: {valid}") from None


class ConductancePathway(str, Enum):
    """Summed conductances the kernel can export for diagnostics."""

    MF_GO = "mf_go"
    GR_GO = "gr_go"
    MF_GR = "mf_gr"
    GO_GR = "go_gr"


__all__ = [
    "CellType",
    "ZONE_CELL_TYPES",
    "INNET_CELL_TYPES",
    "NUM_CELL_TYPES",
    "PlasticityMode",
    "ConductancePathway",
]
