import pytest

from factory_twin.sim.clock import SimulationClock
from factory_twin.sim.engine import SimulationEngine
from factory_twin.sim.entities import STATION_ORDER, Lane, Layout, SimulationState, Station, Unit
from factory_twin.sim.spawn import SpawnQueue
from factory_twin.sim.transporter import Transporter


def _engine(
    identities=None,
    ceiling: int = 12,
    min_interval: float = 1.6,
    dt: float = 0.016,
    speed: float = 1.0,
    min_spacing: float = 0.5,
    gantry_rate: float = 0.3,
    events: list | None = None,
    seed: int = 7,
) -> SimulationEngine:
    layout = Layout()
    state = SimulationState(
        clock=SimulationClock(dt),
        transporter=Transporter(rate=gantry_rate, pickup=layout.gantry_pickup, drop=layout.gantry_drop),
        spawn_queue=SpawnQueue(identities if identities is not None else ["red"] * 32, ceiling, min_interval),
        layout=layout,
    )
    sink = events.append if events is not None else None
    return SimulationEngine(state, speed=speed, min_spacing=min_spacing, event_sink=sink, seed=seed)


@pytest.mark.parametrize("dt", [0.01, 0.016, 0.05, 0.1])
def test_time_to_lifting_matches_distance_over_speed(dt):
    events: list[dict] = []
    engine = _engine(identities=["red"], min_interval=0.0, dt=dt, events=events)
    layout = engine.state.layout

    for _ in range(int(5.0 / dt)):
        engine.step()

    spawn = next(e for e in events if e["event"] == "spawn")
    lift = next(e for e in events if e["event"] == "lift")
    # The spawn tick already carries the box for one full delta.
    travel_time = lift["elapsed"] - spawn["elapsed"] + dt
    distance = layout.handoff_x - layout.inbound_entry_x
    assert travel_time == pytest.approx(distance / 1.0, abs=dt + 1e-6)


def test_approaching_box_is_clamped_at_handoff():
    engine = _engine(identities=[], gantry_rate=0.0)
    unit = Unit(id=1, identity="red", x=-0.51, z=3.0)
    engine.state.units.append(unit)

    engine.step()

    assert unit.station is Station.LIFTING
    assert unit.lane is Lane.GANTRY


def test_blocked_box_does_not_move():
    engine = _engine(identities=[])
    leader = Unit(id=1, identity="red", x=-1.0, z=3.0)
    follower = Unit(id=2, identity="blue", x=-1.3, z=3.0)
    engine.state.units.extend([follower, leader])

    engine.step()

    assert leader.x == pytest.approx(-1.0 + 0.016)
    assert follower.x == -1.3


def test_follower_closes_up_to_exactly_min_spacing():
    engine = _engine(identities=[], speed=1.0)
    leader = Unit(id=1, identity="red", x=-1.0, z=3.0)
    follower = Unit(id=2, identity="blue", x=-1.49, z=3.0)
    engine.state.units.extend([leader, follower])

    engine.step()

    assert leader.x - follower.x == pytest.approx(0.5)


def test_approaching_spacing_invariant_holds_every_tick():
    engine = _engine(ceiling=16, min_interval=0.0, min_spacing=0.8, gantry_rate=0.05)
    for _ in range(4000):
        engine.step()
        approaching = sorted(
            (u for u in engine.state.units if u.station is Station.APPROACHING),
            key=lambda u: u.x,
        )
        for behind, ahead in zip(approaching, approaching[1:]):
            assert behind.lane is ahead.lane
            assert ahead.x - behind.x >= 0.8 - 1e-9


def test_population_never_exceeds_ceiling():
    engine = _engine(ceiling=3, min_interval=0.0, gantry_rate=1.0)
    for _ in range(5000):
        engine.step()
        assert engine.population <= 3
    assert engine.population == 3
    assert len(engine.state.spawn_queue) == 29


def test_station_transitions_only_move_forward():
    engine = _engine(identities=["a", "b", "c", "d"], min_interval=0.5)
    seen: dict[int, Station] = {}
    for _ in range(6000):
        engine.step()
        for unit in engine.state.units:
            previous = seen.get(unit.id)
            if previous is not None:
                assert STATION_ORDER[unit.station] >= STATION_ORDER[previous]
            seen[unit.id] = unit.station
    assert all(station is Station.SETTLED for station in seen.values())
    assert len(seen) == 4


def test_lifting_waits_for_gantry_threshold():
    events: list[dict] = []
    engine = _engine(identities=["red"], min_interval=0.0, events=events)
    phases_at_transfer = []

    def sink(event: dict) -> None:
        events.append(event)
        if event["event"] == "transfer":
            phases_at_transfer.append(engine.state.transporter.phase)

    engine.event_sink = sink
    for _ in range(2000):
        engine.step()
        for unit in engine.state.units:
            if unit.station is Station.LIFTING:
                assert unit.x == engine.state.transporter.x
                assert unit.z == engine.state.transporter.z

    assert phases_at_transfer
    assert all(phase >= 0.9 for phase in phases_at_transfer)


def test_box_stays_lifting_while_gantry_never_reaches_drop():
    engine = _engine(identities=["red"], min_interval=0.0, gantry_rate=0.0)
    for _ in range(1000):
        engine.step()
    (unit,) = engine.state.units
    assert unit.station is Station.LIFTING
    assert (unit.x, unit.z) == (engine.state.transporter.x, engine.state.transporter.z)


def test_transfer_resets_to_outbound_entry_and_settles_on_pallet():
    events: list[dict] = []
    engine = _engine(identities=["red", "blue"], min_interval=1.0, events=events)
    layout = engine.state.layout
    for _ in range(3000):
        engine.step()

    transfers = [e for e in events if e["event"] == "transfer"]
    assert transfers
    assert all((e["x"], e["z"]) == (layout.outbound_entry_x, layout.outbound_z) for e in transfers)

    half = layout.pallet_footprint / 2
    for unit in engine.state.units:
        assert unit.station is Station.SETTLED
        assert unit.lane is Lane.PALLET
        assert abs(unit.x - layout.pallet_x) <= half
        assert abs(unit.z - layout.pallet_z) <= half


def test_settled_boxes_stop_moving():
    engine = _engine(identities=["red"], min_interval=0.0)
    for _ in range(3000):
        engine.step()
    (unit,) = engine.state.units
    assert unit.station is Station.SETTLED
    position = (unit.x, unit.z)
    for _ in range(500):
        engine.step()
    assert (unit.x, unit.z) == position


def test_paused_clock_freezes_everything():
    engine = _engine(min_interval=0.0)
    for _ in range(50):
        engine.step()
    engine.state.clock.pause()
    before = engine.snapshot()
    for _ in range(100):
        assert engine.step() is False
    assert engine.snapshot() == before

    engine.state.clock.resume()
    assert engine.step() is True
    assert engine.state.clock.tick == before["tick"] + 1


def test_reset_destroys_units_and_restarts_spawning():
    events: list[dict] = []
    engine = _engine(identities=["a", "b", "c"], min_interval=1.6, events=events)
    for _ in range(500):
        engine.step()
    assert engine.population > 0

    engine.reset()
    assert engine.population == 0
    assert len(engine.state.spawn_queue) == 3
    assert events[-1]["event"] == "reset"

    for _ in range(99):
        engine.step()
    assert engine.population == 0
    for _ in range(2):
        engine.step()
    assert engine.population == 1


def test_same_seed_gives_identical_runs():
    engine_a = _engine(seed=11, min_interval=0.3)
    engine_b = _engine(seed=11, min_interval=0.3)
    for _ in range(4000):
        engine_a.step()
        engine_b.step()
    assert engine_a.snapshot() == engine_b.snapshot()
