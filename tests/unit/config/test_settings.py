"""
Unit tests for settings loading and logging setup.
"""

import logging

import pytest
from pydantic import ValidationError

from tinkerchat.config.logging import ROOT_LOGGER_NAME, ColoredFormatter, get_logger, setup_logging
from tinkerchat.config.settings import ContextSettings, Settings, StorageSettings, load_settings


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run from an empty directory so no stray .env is picked up."""
    monkeypatch.chdir(tmp_path)
    for name in ("LLM_PROVIDER", "LLM_MODEL", "CONTEXT_RESPONSE_RESERVE", "STORAGE_BACKEND", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def restore_root_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield logger
    for handler in logger.handlers:
        if handler not in saved[1]:
            handler.close()
    logger.setLevel(saved[0])
    logger.handlers[:] = saved[1]
    logger.propagate = saved[2]


class TestSettings:

    def test_defaults(self, clean_env):
        settings = load_settings()

        assert settings.llm.provider == "openai"
        assert settings.context.response_reserve == 1024
        assert settings.context.knowledge_k == 0
        assert settings.context.max_context_tokens is None
        assert settings.storage.backend == "chromadb"
        assert settings.log_file is None

    def test_env_prefixes(self, clean_env, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "litellm")
        monkeypatch.setenv("LLM_MODEL", "openai/gpt-4o")
        monkeypatch.setenv("CONTEXT_RESPONSE_RESERVE", "2048")
        monkeypatch.setenv("STORAGE_BACKEND", "memory")

        settings = Settings()

        assert settings.llm.provider == "litellm"
        assert settings.llm.model == "openai/gpt-4o"
        assert settings.context.response_reserve == 2048
        assert settings.storage.backend == "memory"

    def test_env_file(self, clean_env):
        env_file = clean_env / "test.env"
        env_file.write_text("LOG_LEVEL=DEBUG\n")

        assert load_settings(env_file=env_file).log_level == "DEBUG"

    def test_each_call_is_fresh(self, clean_env):
        assert load_settings() is not load_settings()

    def test_rejects_unknown_backend(self, clean_env, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
        with pytest.raises(ValidationError):
            StorageSettings()

    def test_rejects_negative_reserve(self):
        with pytest.raises(ValidationError):
            ContextSettings(response_reserve=-1)


class TestLogging:

    def test_get_logger_parents_under_root(self):
        assert get_logger("tinkerchat.llm").name == "tinkerchat.llm"
        assert get_logger("scripts.tool").name == "tinkerchat.scripts.tool"

    def test_setup_logging_configures_console(self, clean_env, restore_root_logger):
        setup_logging(Settings(log_level="WARNING"))

        assert restore_root_logger.level == logging.WARNING
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, ColoredFormatter)
        assert restore_root_logger.propagate is False

    def test_setup_logging_adds_file_handler(self, clean_env, restore_root_logger):
        log_file = clean_env / "logs" / "chat.log"

        setup_logging(Settings(log_file=log_file))
        get_logger("test").info("hello file")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert "hello file" in log_file.read_text()

    def test_colored_formatter_leaves_record_untouched(self):
        record = logging.LogRecord("tinkerchat", logging.ERROR, __file__, 1, "boom", None, None)

        output = ColoredFormatter("%(levelname)s %(message)s").format(record)

        assert "\033[31m" in output
        assert record.levelname == "ERROR"
