import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


load_dotenv()


FRIDAY = 4
DEFAULT_CORS_ORIGINS = "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173"


def _require_env(name: str) -> str:
    value = (os.environ.get(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _parse_bool_env(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LendingSettings:
    database_url: str
    anchor_weekday: int = FRIDAY
    maintenance_blocking_levels: tuple[str, ...] = ("high",)
    auto_create_schema: bool = True
    cors_allow_origins: list[str] = field(default_factory=list)
    cors_allow_credentials: bool = True


def load_settings() -> LendingSettings:
    anchor_weekday = int(os.environ.get("TOOL_LENDING_ANCHOR_WEEKDAY") or FRIDAY)
    if not 0 <= anchor_weekday <= 6:
        raise RuntimeError("TOOL_LENDING_ANCHOR_WEEKDAY must be between 0 (Monday) and 6 (Sunday).")

    blocking_levels = tuple(
        level.lower() for level in _parse_csv_env("TOOL_LENDING_MAINTENANCE_BLOCKING_LEVELS", "high")
    )

    origins = _parse_csv_env("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ORIGINS)
    allow_credentials = _parse_bool_env("CORS_ALLOW_CREDENTIALS", "true")
    if "*" in origins:
        # Browsers reject wildcard origins with credentials.
        allow_credentials = False

    return LendingSettings(
        database_url=_require_env("TOOL_LENDING_DB_URL"),
        anchor_weekday=anchor_weekday,
        maintenance_blocking_levels=blocking_levels,
        auto_create_schema=_parse_bool_env("TOOL_LENDING_AUTO_CREATE_SCHEMA", "true"),
        cors_allow_origins=origins,
        cors_allow_credentials=allow_credentials,
    )
