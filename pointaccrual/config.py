"""Service configuration read from the environment and an optional .env file."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

_DEFAULT_HTTP_PORT = "8080"


class ConfigError(ValueError):
    """Raised when the configuration cannot be built."""


@dataclass(frozen=True)
class Config:
    """Settings for the HTTP server, the database and the summary files."""

    mongo_uri: str
    mongo_db_name: str
    file_path: str
    http_server_port: str = _DEFAULT_HTTP_PORT


def _process_environment() -> dict[str, str]:
    values: dict[str, str] = {}
    dotenv_path = Path(".env")
    if dotenv_path.is_file():
        values.update(
            {key: value for key, value in dotenv_values(dotenv_path).items() if value is not None}
        )
    else:
        logger.info("No .env file found, using environment variables")
    values.update(os.environ)
    return values


def _required(values: Mapping[str, str], name: str) -> str:
    if name not in values:
        raise ConfigError(
            f'could not parse config: required environment variable "{name}" is not set'
        )
    return values[name]


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build a Config from ``environ``, or from the process environment and ./.env."""
    values = _process_environment() if environ is None else environ
    return Config(
        mongo_uri=_required(values, "MONGO_URI"),
        mongo_db_name=_required(values, "MONGO_DB_NAME"),
        file_path=_required(values, "FILE_PATH"),
        http_server_port=values.get("HTTP_SERVER_PORT") or _DEFAULT_HTTP_PORT,
    )