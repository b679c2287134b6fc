from __future__ import annotations

"""
File: factory_twin/sim/runner.py
Purpose: Async driver that ticks the simulation and streams snapshots.
Key responsibilities:
- Step the engine at a fixed cadence while not paused.
- Broadcast snapshots to simulation viewers.
- Apply presentation controls (pause/resume, reset, gantry repositioning).
Key entrypoints:
- SimRunner.start(), SimRunner.stop()
Config/env vars:
- SIM_TICK_HZ, SIM_TICK_DT, SIM_PROFILE, SIM_SEED
"""

import asyncio
import logging

from factory_twin.sim.engine import SimulationEngine
from factory_twin.ws import TelemetryChannel

logger = logging.getLogger("factory-twin-sim")

EVENT_MESSAGES = {
    "spawn": "Spawn box",
    "lift": "Box lifted",
    "transfer": "Drop to conveyor 2",
    "sorted": "Reached robot/pallet",
    "settled": "Box placed on pallet",
    "reset": "Reset",
}


def log_sim_event(event: dict) -> None:
    """Engine event sink that writes lifecycle milestones to the app log."""
    message = EVENT_MESSAGES.get(event["event"], event["event"])
    level = logging.DEBUG if event["event"] in {"lift", "settled"} else logging.INFO
    if "unit_id" in event:
        logger.log(level, "%s unit=%s identity=%s tick=%s", message, event["unit_id"], event["identity"], event["tick"])
    else:
        logger.log(level, "%s tick=%s", message, event["tick"])


class SimRunner:
    """Fixed-cadence simulation loop feeding a snapshot stream."""
    def __init__(self, engine: SimulationEngine, stream: TelemetryChannel, tick_hz: int) -> None:
        if tick_hz <= 0:
            raise ValueError("tick_hz must be positive")
        self.engine = engine
        self.stream = stream
        self.interval = 1.0 / tick_hz
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background tick loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Cancel the tick loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run(self) -> None:
        """Tick until cancelled."""
        logger.info("sim runner started interval=%.4fs dt=%.4f", self.interval, self.engine.state.clock.dt)
        while True:
            try:
                await self.tick_once()
            except Exception as exc:  # noqa: BLE001
                logger.exception("sim tick failed tick=%s err=%s", self.engine.state.clock.tick, exc)
            await asyncio.sleep(self.interval)

    async def tick_once(self) -> bool:
        """Run one tick and broadcast the snapshot if time advanced."""
        if not self.engine.step():
            return False
        await self.stream.publish(self.engine.snapshot(), kind="sim")
        return True

    def toggle(self) -> bool:
        paused = self.engine.state.clock.toggle()
        logger.info("Paused" if paused else "Resumed")
        return paused

    def pause(self) -> None:
        self.engine.state.clock.pause()
        logger.info("Paused")

    def resume(self) -> None:
        self.engine.state.clock.resume()
        logger.info("Resumed")

    def reset(self) -> None:
        self.engine.reset()

    def reposition_gantry(self, offset: float) -> float:
        step = self.engine.state.transporter.reposition(offset)
        logger.info("gantry reposition requested=%.3f applied=%.3f", offset, step)
        return step
