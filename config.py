import os
from dataclasses import dataclass
from typing import Mapping, Optional

from psycopg.conninfo import make_conninfo


def _conninfo_from_parts(env: Mapping[str, str]) -> Optional[str]:
    if not env.get("DB_NAME"):
        return None
    parts = {
        "host": env.get("DB_HOST", "localhost"),
        "port": env.get("DB_PORT", "5432"),
        "dbname": env.get("DB_NAME"),
        "user": env.get("DB_USER"),
        "password": env.get("DB_PASSWORD"),
    }
    return make_conninfo(**{key: value for key, value in parts.items() if value})


@dataclass(frozen=True)
class Settings:
    database_url: str
    mongo_uri: str = "mongodb://localhost:27017/"
    mongo_database: str = "ecoguide"
    host: str = "127.0.0.1"
    port: int = 5000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        database_url = env.get("DATABASE_URL") or _conninfo_from_parts(env)
        if not database_url:
            raise RuntimeError("DATABASE_URL (or DB_NAME and friends) must be set")

        return cls(
            database_url=database_url,
            mongo_uri=env.get("MONGO_URI", "mongodb://localhost:27017/"),
            mongo_database=env.get("MONGO_DATABASE", "ecoguide"),
            host=env.get("HOST", "127.0.0.1"),
            port=int(env.get("PORT", "5000")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
