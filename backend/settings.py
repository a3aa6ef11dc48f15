from pydantic_settings import BaseSettings, SettingsConfigDict

from src.departures.models import PipelineConfig
from src.digitransit.errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "HSL Next Departures API"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    # CORS: "*" for dev; in production set to comma-separated origins
    cors_origins: str = "*"
    rate_limit: str = "100/minute"

    # Digitransit subscription key (get at portal-api.digitransit.fi)
    digitransit_key: str = ""
    # When true the server refuses to start without a key; when false /api/next answers 500 instead
    require_key_at_startup: bool = True
    routing_url: str = "https://api.digitransit.fi/routing/v2/hsl/gtfs/v1"
    geocode_url: str = "https://api.digitransit.fi/geocoding/v1/search"
    geocode_lang: str = "fi"
    upstream_timeout_seconds: float = 10.0

    # Query defaults for GET /api/next
    default_address: str = "Matinpuronkuja 1"
    default_radius_m: int = 700
    default_departures_per_stop: int = 25

    # Upstream is not case-consistent, so list both spellings (e.g. 164K and 164k)
    wanted_lines: str = "114,111,164,164K,164k"
    max_stops: int = 10
    max_departures_per_stop: int = 4
    max_results: int = 12
    fetch_concurrency: int = 4
    stale_grace_seconds: int = 60

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            wanted_lines=frozenset(x.strip() for x in self.wanted_lines.split(",") if x.strip()),
            max_stops=self.max_stops,
            max_departures_per_stop=self.max_departures_per_stop,
            max_results=self.max_results,
            concurrency=self.fetch_concurrency,
            stale_grace_seconds=self.stale_grace_seconds,
        )

    def require_digitransit_key(self) -> str:
        key = self.digitransit_key.strip()
        if not key:
            raise ConfigError(
                "Missing DIGITRANSIT_KEY. Set it in the environment or .env file."
            )
        return key


def get_settings() -> Settings:
    return Settings()
