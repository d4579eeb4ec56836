from __future__ import annotations

import logging
from pathlib import Path

import pytest

from ssb_trainer.config import LOG_FORMAT, TrainerConfig, configure_logging


def test_defaults_live_in_home() -> None:
    cfg = TrainerConfig.from_env({})
    assert cfg.db_path == Path.home() / ".ssb_trainer.sqlite3"
    assert cfg.media_dir == Path.home() / ".ssb_trainer_media"
    assert cfg.user_id == "local"
    assert cfg.log_level == "WARNING"


def test_environment_overrides(tmp_path: Path) -> None:
    cfg = TrainerConfig.from_env(
        {
            "SSB_TRAINER_DB_PATH": str(tmp_path / "db.sqlite3"),
            "SSB_TRAINER_MEDIA_DIR": str(tmp_path / "media"),
            "SSB_TRAINER_USER_ID": " cadet42 ",
            "SSB_TRAINER_LOG_LEVEL": "debug",
        }
    )
    assert cfg.db_path == tmp_path / "db.sqlite3"
    assert cfg.media_dir == tmp_path / "media"
    assert cfg.user_id == "cadet42"
    assert cfg.log_level == "DEBUG"


def test_rejects_unknown_log_level() -> None:
    with pytest.raises(ValueError):
        TrainerConfig.from_env({"SSB_TRAINER_LOG_LEVEL": "loud"})


def test_configure_logging_installs_one_handler() -> None:
    logger = logging.getLogger("ssb_trainer")
    before = list(logger.handlers)
    try:
        configure_logging("INFO")
        configure_logging("DEBUG")
        added = [h for h in logger.handlers if h not in before]
        assert len(added) <= 1
        assert logger.level == logging.DEBUG
        ours = [h for h in logger.handlers if getattr(h, "_ssb_trainer", False)]
        assert len(ours) == 1
        assert ours[0].formatter is not None
        assert ours[0].formatter._fmt == LOG_FORMAT
    finally:
        for h in logger.handlers[:]:
            if h not in before:
                logger.removeHandler(h)
        logger.setLevel(logging.NOTSET)
