from __future__ import annotations

"""
File: factory_twin/main.py
Purpose: Relay server and simulation host for the factory digital twin.
Key responsibilities:
- Serve the static viewer page and assets.
- Relay injected telemetry to every connected WebSocket client.
- Stream simulation snapshots and expose pause/reset/gantry controls.
- Persist client log lines and export the activity log.
Key entrypoints:
- startup_event(), shutdown_event()
- /ws, /ws/sim, /log, /api/sim/* endpoints
Config/env vars:
- TWIN_HOST, TWIN_PORT, TWIN_STATIC_DIR, TWIN_LOG_DIR, TWIN_LOG_FILE
- SIM_PROFILE, SIM_TICK_HZ, SIM_TICK_DT, SIM_SEED, SIM_AUTOSTART
- DEMO_INJECTOR_HZ
"""

import asyncio
import json
import logging
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
import queue
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
import uvicorn

from factory_twin.ingest import EquipmentSnapshotGenerator, TelemetryInjector
from factory_twin.logsink import LogSink, SinkHandler
from factory_twin.schemas import GantryCommand, LogRequest
from factory_twin.settings import log_path, settings
from factory_twin.sim.runner import SimRunner, log_sim_event
from factory_twin.sim.world import build_engine
from factory_twin.ws import MalformedPayload, TelemetryChannel

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s factory-twin %(message)s")
logger = logging.getLogger("factory-twin")

sink = LogSink(None, buffer_lines=settings.log_buffer_lines)
sink_records: queue.SimpleQueue = queue.SimpleQueue()
sink_listener = QueueListener(sink_records, SinkHandler(sink), respect_handler_level=True)
for name in ("factory-twin", "factory-twin-ws", "factory-twin-sim", "factory-twin-ingest"):
    logging.getLogger(name).addHandler(QueueHandler(sink_records))

telemetry = TelemetryChannel(
    sink=sink,
    welcome_message=settings.welcome_message,
    max_pending=settings.consumer_queue_size,
    name="telemetry",
)
sim_stream = TelemetryChannel(
    welcome_message="Connected to simulation stream",
    max_pending=settings.consumer_queue_size,
    name="sim-stream",
)
sim_runner = SimRunner(build_engine(event_sink=log_sim_event), sim_stream, settings.sim_tick_hz)
injector: TelemetryInjector | None = None
if settings.demo_injector_hz > 0:
    injector = TelemetryInjector(telemetry, EquipmentSnapshotGenerator(settings.sim_seed), settings.demo_injector_hz)

STATIC_DIR = Path(settings.static_dir)

app = FastAPI(title="factory-twin", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.on_event("startup")
async def startup_event() -> None:
    """Open the log sink and start the simulation loop and demo injector."""
    sink.open(log_path())
    sink_listener.start()
    logger.info("App start log_file=%s", sink.path)
    if settings.sim_autostart:
        sim_runner.start()
    if injector is not None:
        injector.start()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Stop background tasks and drop every consumer."""
    if injector is not None:
        await injector.stop()
    await sim_runner.stop()
    await telemetry.close()
    await sim_stream.close()
    sink_listener.stop()


@app.get("/")
async def index() -> FileResponse:
    """Serve the viewer HTML."""
    return FileResponse(STATIC_DIR / "index.html")


@app.get("/health")
async def health() -> dict[str, Any]:
    """Liveness endpoint with connected consumer counts."""
    return {
        "status": "ok",
        "consumers": telemetry.consumer_count,
        "sim_viewers": sim_stream.consumer_count,
    }


@app.post("/log")
async def append_log(request: Request) -> JSONResponse:
    """Append a client log line to the sink."""
    raw = await request.body()
    try:
        body = LogRequest.model_validate(json.loads(raw or b"{}"))
    except (ValueError, RecursionError):
        return JSONResponse(status_code=400, content={"status": "bad request"})
    await asyncio.to_thread(sink.write, sink.record(body.message))
    return JSONResponse(status_code=200, content={"status": "ok"})


@app.get("/log")
async def export_log() -> PlainTextResponse:
    """Download the in-memory activity log."""
    return PlainTextResponse(
        sink.export(),
        headers={"Content-Disposition": 'attachment; filename="factory-demo.log.txt"'},
    )


@app.get("/api/sim")
async def sim_snapshot() -> dict[str, Any]:
    """Return the current simulation snapshot."""
    return sim_runner.engine.snapshot()


@app.post("/api/sim/toggle")
async def sim_toggle() -> dict[str, Any]:
    """Flip pause/resume."""
    sim_runner.toggle()
    return sim_runner.engine.snapshot()


@app.post("/api/sim/pause")
async def sim_pause() -> dict[str, Any]:
    sim_runner.pause()
    return sim_runner.engine.snapshot()


@app.post("/api/sim/resume")
async def sim_resume() -> dict[str, Any]:
    sim_runner.resume()
    return sim_runner.engine.snapshot()


@app.post("/api/sim/reset")
async def sim_reset() -> dict[str, Any]:
    """Destroy all boxes and restart spawning."""
    sim_runner.reset()
    return sim_runner.engine.snapshot()


@app.post("/api/sim/gantry")
async def sim_gantry(command: GantryCommand) -> dict[str, Any]:
    """Shift the gantry beam by a bounded step."""
    applied = sim_runner.reposition_gantry(command.offset)
    return {"requested": command.offset, "applied": applied}


async def telemetry_endpoint(websocket: WebSocket) -> None:
    """Telemetry relay: greet, then publish every inbound frame to all clients."""
    handle = await telemetry.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            try:
                await telemetry.publish_raw(raw)
            except MalformedPayload as exc:
                logger.warning("rejected malformed payload consumer=%s err=%s", handle.id, exc)
                telemetry.reply_error(handle, exc)
    except WebSocketDisconnect:
        pass
    except Exception as exc:  # noqa: BLE001
        logger.warning("telemetry socket error consumer=%s err=%s", handle.id, exc)
    finally:
        await telemetry.disconnect(handle)


app.add_api_websocket_route("/ws", telemetry_endpoint)
app.add_api_websocket_route("/", telemetry_endpoint)


@app.websocket("/ws/sim")
async def sim_stream_endpoint(websocket: WebSocket) -> None:
    """Simulation snapshot stream; inbound frames are ignored."""
    handle = await sim_stream.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        await sim_stream.disconnect(handle)


def run() -> None:
    """Console entry point."""
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
