from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Load <repo>/.env and accept env keys in any case
    _env_file = Path(__file__).resolve().parent.parent / ".env"
    model_config = SettingsConfigDict(env_file=str(_env_file), extra="ignore", case_sensitive=False)

    app_name: str = "Wind Snapshot Hub"
    app_version: str = "0.1.0"
    debug: bool = False
    port: int = 3708
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:63342",
            "http://localhost:3000",
            "http://localhost:4000",
            "http://localhost:3707",
            "http://danwild.github.io",
        ]
    )

    # Upstream (NOMADS grib filter)
    gfs_filter_url: str = Field(
        default="https://nomads.ncep.noaa.gov/cgi-bin/filter_gfs_1p00.pl",
        description="NOMADS grib filter endpoint for the GFS 1.0 degree analyses.",
    )
    upstream_user_agent: str = Field(
        default="WindSnapshotHub/0.1.0 (support@example.com)",
        description="User-Agent sent to NOMADS.",
    )
    upstream_request_timeout: float = Field(default=60.0, ge=1.0, description="Timeout in seconds for upstream HTTP calls")

    # Conversion
    converter_command: str = Field(
        default="converter/bin/grib2json",
        description="grib2json executable (may include leading arguments).",
    )
    converter_timeout_seconds: float = Field(default=120.0, ge=1.0, description="Kill the converter after this many seconds")

    # Storage
    snapshot_dir: str = Field(default="json-data", description="Directory holding converted snapshots, one file per key.")
    raw_dir: str = Field(default="grib-data", description="Scratch directory for raw GRIB2 downloads.")

    # Harvest
    harvest_enabled: bool = Field(default=True, description="Run the periodic harvest loop on startup.")
    harvest_interval_minutes: float = Field(default=15.0, gt=0.0, description="Spacing between scheduled harvests.")
    snapshot_cadence_hours: int = Field(default=6, ge=1, le=24, description="Publication cadence of upstream snapshots.")
    harvest_horizon_days: float = Field(default=30.0, gt=0.0, description="Maximum look-back when walking backward for data.")
    harvest_history_limit: int = Field(default=50, ge=1, description="Number of harvest reports retained in memory.")
    harvest_log_path: str | None = Field(
        default=None,
        description="Optional JSONL file receiving every harvest report. Leave blank to disable.",
    )

    # Lookup
    default_search_limit_days: int = Field(default=1, ge=1, description="Search radius used when a query omits searchLimit.")
    max_search_limit_days: int = Field(default=30, ge=1, description="Upper clamp applied to caller supplied searchLimit.")
    latest_lookback_days: float | None = Field(
        default=None,
        gt=0.0,
        description="How far /latest walks back before giving up. Defaults to the harvest horizon.",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

    @field_validator("snapshot_cadence_hours")
    @classmethod
    def cadence_divides_day(cls, v: int) -> int:
        if 24 % v != 0:
            raise ValueError("snapshot_cadence_hours must divide 24")
        return v

    @field_validator("harvest_log_path", mode="before")
    @classmethod
    def blank_log_path(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

settings = Settings()
