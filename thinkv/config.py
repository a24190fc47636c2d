import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Runtime configuration, read from the environment (and a .env file if present)."""

    def __init__(self):
        self.mongo_uri = os.getenv("MONGO_URI")
        self.telemetry_base_url = os.getenv("TELEMETRY_BASE_URL", "http://localhost:8000")
        self.telemetry_timeout = float(os.getenv("TELEMETRY_TIMEOUT", 5))
        self.store_timeout = float(os.getenv("STORE_TIMEOUT", 5))
        self.writeback_batch_size = int(os.getenv("WRITEBACK_BATCH_SIZE", 50))
        self.writeback_enabled = _env_bool("WRITEBACK_ENABLED", True)
        self.chart_max_points = int(os.getenv("CHART_MAX_POINTS", 50))
        self.field_results = int(os.getenv("FIELD_RESULTS", 50))
        self.sync_interval_minutes = int(os.getenv("SYNC_INTERVAL_MINUTES", 0))
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
