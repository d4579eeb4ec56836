from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DB_PATH_ENV = "SSB_TRAINER_DB_PATH"
MEDIA_DIR_ENV = "SSB_TRAINER_MEDIA_DIR"
USER_ID_ENV = "SSB_TRAINER_USER_ID"
LOG_LEVEL_ENV = "SSB_TRAINER_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _path_from(env: Mapping[str, str], name: str, default: Path) -> Path:
    explicit = env.get(name)
    if explicit:
        return Path(explicit).expanduser()
    return default


@dataclass(frozen=True, slots=True)
class TrainerConfig:
    db_path: Path
    media_dir: Path
    user_id: str = "local"
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id must be non-empty")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {self.log_level!r}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TrainerConfig:
        env = os.environ if env is None else env
        home = Path.home()
        return cls(
            db_path=_path_from(env, DB_PATH_ENV, home / ".ssb_trainer.sqlite3"),
            media_dir=_path_from(env, MEDIA_DIR_ENV, home / ".ssb_trainer_media"),
            user_id=env.get(USER_ID_ENV, "").strip() or "local",
            log_level=env.get(LOG_LEVEL_ENV, "").strip().upper() or "WARNING",
        )


def configure_logging(level: str | int = "WARNING") -> None:
    """Install one stream handler on the package logger (idempotent)."""

    root = logging.getLogger("ssb_trainer")
    root.setLevel(level)
    for handler in root.handlers:
        if getattr(handler, "_ssb_trainer", False):
            handler.setLevel(level)
            return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._ssb_trainer = True  # type: ignore[attr-defined]
    root.addHandler(handler)
