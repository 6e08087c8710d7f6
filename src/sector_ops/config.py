"""Runtime configuration.

Values come from environment variables. The CLI loads a `.env` file first
(python-dotenv); the HTTP server reads whatever the process environment holds.
"""

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class FtplLimits:
    """Flight and duty time limitations."""

    min_rest_hours: float = 8.0
    max_duty_period_hours: float = 14.0
    max_daily_flight_hours: float = 10.0
    max_monthly_flight_hours: float = 100.0


@dataclass(frozen=True)
class SynthesisSettings:
    """Bounds for randomized roster construction."""

    candidates_per_airport: int = 3
    min_legs: int = 2
    max_legs: int = 4
    multiplier_min: float = 1.10
    multiplier_max: float = 1.50


@dataclass
class Settings:
    database_url: str = "sqlite:///./sector_ops.db"
    jwt_secret: str = ""
    route_sources_path: str = "./routes.json"
    routes_sheet_url: str = ""
    route_fetch_timeout: float = 15.0
    primary_operator: str = "Sector Ops"
    default_hub: str = "VIDP"
    ledger_webhook_url: str = ""
    ledger_token: str = ""
    storage_endpoint_url: str = ""
    storage_access_key: str = ""
    storage_secret_key: str = ""
    storage_bucket: str = "sector-ops"
    ftpl: FtplLimits = field(default_factory=FtplLimits)
    synthesis: SynthesisSettings = field(default_factory=SynthesisSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            database_url=env.get("DATABASE_URL", "").strip() or cls.database_url,
            jwt_secret=env.get("JWT_SECRET", "").strip(),
            route_sources_path=env.get("ROUTE_SOURCES_PATH", "").strip() or cls.route_sources_path,
            routes_sheet_url=env.get("ROUTES_SHEET_URL", "").strip(),
            route_fetch_timeout=float(env.get("ROUTE_FETCH_TIMEOUT", "15")),
            primary_operator=env.get("PRIMARY_OPERATOR", "").strip() or cls.primary_operator,
            default_hub=(env.get("DEFAULT_HUB", "").strip() or cls.default_hub).upper(),
            ledger_webhook_url=env.get("LEDGER_WEBHOOK_URL", "").strip(),
            ledger_token=env.get("LEDGER_TOKEN", "").strip(),
            storage_endpoint_url=env.get("STORAGE_ENDPOINT_URL", "").strip(),
            storage_access_key=env.get("STORAGE_ACCESS_KEY", ""),
            storage_secret_key=env.get("STORAGE_SECRET_KEY", ""),
            storage_bucket=env.get("STORAGE_BUCKET", "").strip() or cls.storage_bucket,
        )
