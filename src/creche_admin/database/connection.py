from __future__ import annotations

from dataclasses import dataclass

import mysql.connector

from ..core.constants import DEFAULT_ISOLATION_LEVEL


@dataclass(frozen=True)
class DBConfig:
    host: str
    port: int
    user: str
    password: str
    database: str
    isolation_level: str = DEFAULT_ISOLATION_LEVEL

    @classmethod
    def from_mapping(cls, db_config: dict, *, isolation_level: str = DEFAULT_ISOLATION_LEVEL) -> "DBConfig":
        return cls(
            host=str(db_config["host"]),
            port=int(db_config.get("port", 3306)),
            user=str(db_config["user"]),
            password=str(db_config["password"]),
            database=str(db_config["database"]),
            isolation_level=str(isolation_level),
        )


class DatabaseConnection:
    """DB connection factory.

    Note: We create short-lived connections per unit of work. One instance is
    built by the container and passed to every repository.
    """

    def __init__(self, config: DBConfig):
        self._config = config

    @property
    def isolation_level(self) -> str:
        return self._config.isolation_level

    def connect(self):
        return mysql.connector.connect(
            host=self._config.host,
            port=int(self._config.port),
            user=self._config.user,
            password=self._config.password,
            database=self._config.database,
            autocommit=False,
        )
