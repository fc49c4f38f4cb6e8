"""
sysinv configuration.

All settings come from environment variables with local-dev defaults.
load_settings() is called once by the entry point and the resulting Settings
value is handed to every component; nothing else reads the environment.

  DATABASE_URL                SQLAlchemy URL (default: sqlite:///./sysinv.db); in-memory
                              SQLite gives readers no isolation from writes
  DB_POOL_SIZE / DB_MAX_OVERFLOW
  OSQUERY_SOCKET              osquery extension socket path
  OSQUERY_TIMEOUT_SECONDS     socket open timeout
  QUERY_INTERVAL              seconds between collection cycles (default: 300)
  FACT_FETCH_TIMEOUT_SECONDS  deadline for one fact fetch (default: 30)
  SERVER_HOST / SERVER_PORT   HTTP bind address (default: localhost:7070)
  CORS_ORIGINS                comma-separated allowed origins
  LOG_LEVEL                   debug | info | warning | error
"""

import os
from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class Settings:
    database_url:               str         = "sqlite:///./sysinv.db"
    db_pool_size:               int         = 10
    db_max_overflow:            int         = 20
    osquery_socket:             str         = "/var/osquery/osquery.em"
    osquery_timeout_seconds:    int         = 3
    query_interval_seconds:     int         = 300
    fact_fetch_timeout_seconds: int         = 30
    server_host:                str         = "localhost"
    server_port:                int         = 7070
    cors_origins:               tuple       = ("http://localhost:3000",)
    log_level:                  str         = "info"


def _get_str(environ: Mapping[str, str], key: str, default: str) -> str:
    value = environ.get(key, "")
    return value if value else default


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = environ.get(key, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_list(environ: Mapping[str, str], key: str, default: tuple) -> tuple:
    value = environ.get(key, "")
    if not value:
        return default
    return tuple(v.strip() for v in value.split(",") if v.strip())


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment. Malformed integers fall back to defaults."""
    env = os.environ if environ is None else environ
    d = Settings()
    return Settings(
        database_url=_get_str(env, "DATABASE_URL", d.database_url),
        db_pool_size=_get_int(env, "DB_POOL_SIZE", d.db_pool_size),
        db_max_overflow=_get_int(env, "DB_MAX_OVERFLOW", d.db_max_overflow),
        osquery_socket=_get_str(env, "OSQUERY_SOCKET", d.osquery_socket),
        osquery_timeout_seconds=_get_int(env, "OSQUERY_TIMEOUT_SECONDS", d.osquery_timeout_seconds),
        query_interval_seconds=max(1, _get_int(env, "QUERY_INTERVAL", d.query_interval_seconds)),
        fact_fetch_timeout_seconds=max(1, _get_int(env, "FACT_FETCH_TIMEOUT_SECONDS", d.fact_fetch_timeout_seconds)),
        server_host=_get_str(env, "SERVER_HOST", d.server_host),
        server_port=_get_int(env, "SERVER_PORT", d.server_port),
        cors_origins=_get_list(env, "CORS_ORIGINS", d.cors_origins),
        log_level=_get_str(env, "LOG_LEVEL", d.log_level).lower(),
    )
