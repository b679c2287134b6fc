"""
File: factory_twin/settings.py
Purpose: Environment-backed configuration for the factory twin service.
Key responsibilities:
- Parse relay, log sink and simulation settings.
- Build simulation profiles (with optional overrides).
"""

from dataclasses import dataclass
from pathlib import Path
import os


DEFAULT_PROFILE_MAP = {
    "classic": {"ceiling": 12, "spawn_interval_s": 1.6, "queue_size": 64},
    "dense": {"ceiling": 16, "spawn_interval_s": 1.2, "queue_size": 96},
}

BOX_COLORS = ("#bfbfbf", "#999999", "#d4b000", "#7a4cff")


def _int_env(name: str, default: int = 0) -> int:
    """Parse an integer env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return int(raw)


def _float_env(name: str, default: float = 0.0) -> float:
    """Parse a float env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return float(raw)


def _build_profile_map() -> dict[str, dict[str, float]]:
    """Return the profile map with optional global overrides."""
    profile_map = {key: value.copy() for key, value in DEFAULT_PROFILE_MAP.items()}
    ceiling = _int_env("SIM_CEILING", 0)
    interval = _float_env("SIM_SPAWN_INTERVAL_S", 0.0)
    queue_size = _int_env("SIM_QUEUE_SIZE", 0)
    for key in profile_map:
        if ceiling > 0:
            profile_map[key]["ceiling"] = ceiling
        if interval > 0:
            profile_map[key]["spawn_interval_s"] = interval
        if queue_size > 0:
            profile_map[key]["queue_size"] = queue_size
    return profile_map


PROFILE_MAP = _build_profile_map()


@dataclass(frozen=True)
class Settings:
    """Service configuration parsed from environment."""
    host: str = os.getenv("TWIN_HOST", "127.0.0.1")
    port: int = int(os.getenv("TWIN_PORT", "8000"))
    static_dir: str = os.getenv("TWIN_STATIC_DIR", str(Path(__file__).parent / "static"))
    log_dir: str = os.getenv("TWIN_LOG_DIR", str(Path.home() / "Documents" / "factory-3d-html" / "logs"))
    log_file: str = os.getenv("TWIN_LOG_FILE", "app.log")
    log_buffer_lines: int = int(os.getenv("TWIN_LOG_BUFFER_LINES", "2000"))
    consumer_queue_size: int = int(os.getenv("TWIN_CONSUMER_QUEUE_SIZE", "1000"))
    welcome_message: str = os.getenv("TWIN_WELCOME_MESSAGE", "Connected to Smart Factory Digital Twin")
    sim_profile: str = os.getenv("SIM_PROFILE", "classic")
    sim_tick_hz: int = int(os.getenv("SIM_TICK_HZ", "60"))
    sim_tick_dt: float = float(os.getenv("SIM_TICK_DT", "0.016"))
    sim_seed: int = int(os.getenv("SIM_SEED", "42"))
    sim_autostart: bool = os.getenv("SIM_AUTOSTART", "1") not in {"0", "false", "no"}
    conveyor_speed: float = float(os.getenv("CONVEYOR_SPEED", "1.0"))
    min_spacing: float = float(os.getenv("MIN_SPACING", "0.5"))
    gantry_rate: float = float(os.getenv("GANTRY_RATE", "0.3"))
    gantry_max_step: float = float(os.getenv("GANTRY_MAX_STEP", "0.5"))
    demo_injector_hz: float = float(os.getenv("DEMO_INJECTOR_HZ", "0"))


settings = Settings()


def log_path() -> Path:
    return Path(settings.log_dir) / settings.log_file
