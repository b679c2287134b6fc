from __future__ import annotations

"""
File: factory_twin/schemas.py
Purpose: Pydantic models for relay events and HTTP request contracts.
Key responsibilities:
- Define the TelemetryEvent envelope sent to consumers.
- Validate /log and gantry control payloads.
Key entrypoints:
- TelemetryEvent, LogRequest, GantryCommand
"""

from datetime import datetime
import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


EventKind = Literal["welcome", "relay", "error", "sim"]


class TelemetryEvent(BaseModel):
    """Envelope delivered to channel consumers; stamped by the channel."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: EventKind
    received_at: datetime = Field(alias="receivedAt")
    payload: Any = None

    def to_text(self) -> str:
        """Serialize to the JSON text frame sent over the socket."""
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(data, separators=(",", ":"), sort_keys=True)


class LogRequest(BaseModel):
    """Body for POST /log."""
    message: str = ""


class GantryCommand(BaseModel):
    """Body for POST /api/sim/gantry."""
    offset: float
