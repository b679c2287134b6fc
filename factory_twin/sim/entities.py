from __future__ import annotations

"""
File: factory_twin/sim/entities.py
Purpose: Core dataclasses and enums for the box pipeline simulation.
"""

from dataclasses import dataclass, field
from enum import Enum

from factory_twin.sim.clock import SimulationClock
from factory_twin.sim.spawn import SpawnQueue
from factory_twin.sim.transporter import Transporter


class Station(str, Enum):
    """Lifecycle stage of a box, in pipeline order."""
    APPROACHING = "approaching"
    LIFTING = "lifting"
    TRANSFERRING = "transferring"
    SORTING = "sorting"
    SETTLED = "settled"


STATION_ORDER = {station: idx for idx, station in enumerate(Station)}


class Lane(str, Enum):
    INBOUND = "inbound"
    GANTRY = "gantry"
    OUTBOUND = "outbound"
    PALLET = "pallet"


@dataclass(frozen=True)
class Layout:
    """Floor coordinates in metres: x is the transport axis, z the lateral axis."""
    inbound_z: float = 3.0
    inbound_entry_x: float = -2.5
    handoff_x: float = -0.5
    outbound_z: float = -3.0
    outbound_entry_x: float = -2.5
    sort_x: float = 5.5
    pallet_x: float = 6.6
    pallet_z: float = -3.0
    pallet_footprint: float = 0.6
    gantry_pickup: tuple[float, float] = (-2.0, 3.0)
    gantry_drop: tuple[float, float] = (2.0, -3.0)
    handoff_threshold: float = 0.9


@dataclass
class Unit:
    """Box tracked by the simulation engine."""
    id: int
    identity: str
    x: float
    z: float
    station: Station = Station.APPROACHING
    lane: Lane = Lane.INBOUND
    spawned_at: float = 0.0


@dataclass
class SimulationState:
    """Container for the clock, gantry, spawn backlog and live boxes."""
    clock: SimulationClock
    transporter: Transporter
    spawn_queue: SpawnQueue
    layout: Layout = field(default_factory=Layout)
    units: list[Unit] = field(default_factory=list)
    next_unit_id: int = 1
