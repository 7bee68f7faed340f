from __future__ import annotations

import os
from dataclasses import dataclass


def default_db_path() -> str:
    env = os.getenv("LIFX_DB_PATH")
    if env:
        return env

    preferred_dir = "/data"
    try:
        if os.path.isdir(preferred_dir) and os.access(preferred_dir, os.W_OK):
            return os.path.join(preferred_dir, "lifx-act.db")
    except OSError:
        pass

    return os.path.join(os.getcwd(), ".data", "lifx-act.db")


@dataclass(frozen=True)
class AppConfig:
    port: int
    db_path: str
    illumination_step_size: int
    turn_off_level: int
    idle_check_seconds: float
    state_query_timeout_seconds: float
    state_query_max_retries: int
    default_transition_ms: int
    broadcast_address: str
    discovery_interval_seconds: float

    @staticmethod
    def from_env() -> "AppConfig":
        return AppConfig(
            port=int(os.getenv("PORT", "8000")),
            db_path=default_db_path(),
            illumination_step_size=int(os.getenv("LIFX_ILLUMINATION_STEP_SIZE", "255")),
            turn_off_level=int(os.getenv("LIFX_TURN_OFF_LEVEL", "511")),
            idle_check_seconds=float(os.getenv("LIFX_IDLE_CHECK_SECONDS", "4.0")),
            state_query_timeout_seconds=float(os.getenv("LIFX_STATE_QUERY_TIMEOUT_SECONDS", "5.0")),
            state_query_max_retries=int(os.getenv("LIFX_STATE_QUERY_MAX_RETRIES", "5")),
            default_transition_ms=int(os.getenv("LIFX_DEFAULT_TRANSITION_MS", "3000")),
            broadcast_address=os.getenv("LIFX_BROADCAST_ADDRESS", "255.255.255.255"),
            discovery_interval_seconds=float(os.getenv("LIFX_DISCOVERY_INTERVAL_SECONDS", "1.0")),
        )
