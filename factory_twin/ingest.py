from __future__ import annotations

"""
File: factory_twin/ingest.py
Purpose: Telemetry ingestion adapter that turns equipment readings into channel events.
Key responsibilities:
- Generate deterministic equipment/throughput snapshots (demo producer).
- Build equipment-status-only and throughput-only payloads.
- Publish snapshots into the telemetry channel at a fixed rate.
Config/env vars:
- DEMO_INJECTOR_HZ (0 disables the in-process injector)
"""

import asyncio
import logging
import random
from typing import Any

from factory_twin.logsink import iso_now
from factory_twin.ws import TelemetryChannel

logger = logging.getLogger("factory-twin-ingest")


def equipment_status(equipment_id: str, status: str, **fields: Any) -> dict[str, Any]:
    """Payload carrying the status of a single piece of equipment."""
    return {"equipment": {equipment_id: {"status": status, **fields}}}


def throughput(boxes_per_minute: float) -> dict[str, Any]:
    """Payload carrying a throughput reading."""
    return {"throughput": boxes_per_minute}


class EquipmentSnapshotGenerator:
    """Simulated sensor readings with fixed duty cycles per machine."""
    def __init__(self, seed: int = 0) -> None:
        self.rng = random.Random(seed)
        self.tick = 0

    def next(self) -> dict[str, Any]:
        """Return the snapshot for the next tick."""
        self.tick += 1
        tick = self.tick
        gantry = "active" if tick % 10 < 5 else "idle"
        conveyor1 = "running" if tick % 15 < 12 else "idle"
        robot = "active" if tick % 8 < 3 else "ready"

        return {
            "equipment": {
                "gantry": {
                    "status": gantry,
                    "utilization": 85 + self.rng.random() * 10 if gantry == "active" else 0,
                },
                "conveyor1": {"status": conveyor1, "speed": 1.0 if conveyor1 == "running" else 0},
                "conveyor2": {"status": "running", "speed": 1.0},
                "robot": {
                    "status": robot,
                    "utilization": 75 + self.rng.random() * 15 if robot == "active" else 0,
                },
            },
            "throughput": round(8 + self.rng.random() * 8, 1),
            "timestamp": iso_now(),
        }


class TelemetryInjector:
    """Background producer publishing generated snapshots into a channel."""
    def __init__(self, channel: TelemetryChannel, generator: EquipmentSnapshotGenerator, hz: float) -> None:
        if hz <= 0:
            raise ValueError("hz must be positive")
        self.channel = channel
        self.generator = generator
        self.interval = 1.0 / hz
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run(self) -> None:
        logger.info("demo injector started interval=%.2fs", self.interval)
        while True:
            try:
                await self.channel.publish(self.generator.next())
            except Exception as exc:  # noqa: BLE001
                logger.exception("injector publish failed: %s", exc)
            await asyncio.sleep(self.interval)
