from __future__ import annotations

import logging

import logging_config


def test_logging_config_routes_service_loggers(monkeypatch):
    monkeypatch.setenv("INGEST_LOG_LEVEL", "debug")
    monkeypatch.setenv("SQL_LOG_LEVEL", "info")

    config = logging_config.build_logging_config("WARNING")

    assert config["root"]["level"] == "WARNING"
    assert config["loggers"]["uvicorn.access"]["level"] == "WARNING"
    assert config["loggers"]["ingestion"] == {"level": "DEBUG", "handlers": ["stdout"], "propagate": False}
    assert config["loggers"]["sqlalchemy.engine"]["level"] == "INFO"


def test_ingest_level_defaults_to_service_level(monkeypatch):
    monkeypatch.delenv("INGEST_LOG_LEVEL", raising=False)
    monkeypatch.delenv("SQL_LOG_LEVEL", raising=False)

    config = logging_config.build_logging_config("INFO")

    assert config["loggers"]["ingestion"]["level"] == "INFO"
    assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"


def test_configure_logging_applies_once(monkeypatch):
    ingestion_logger = logging.getLogger("ingestion")
    monkeypatch.setattr(ingestion_logger, "level", ingestion_logger.level)
    monkeypatch.setattr(logging_config, "_CONFIGURED", False)
    monkeypatch.setenv("INGEST_LOG_LEVEL", "ERROR")

    logging_config.configure_logging("INFO")
    assert logging.getLogger("ingestion").level == logging.ERROR

    monkeypatch.setenv("INGEST_LOG_LEVEL", "DEBUG")
    logging_config.configure_logging("INFO")
    assert logging.getLogger("ingestion").level == logging.ERROR
