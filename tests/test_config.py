"""
Tests for configuration loading, persistence and the logging helpers.
"""

import json

import pytest

from wafcheck import config as config_module
from wafcheck import logger


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "data" / "config.json"
    monkeypatch.setattr(config_module, "DATA_DIR", path.parent)
    monkeypatch.setattr(config_module, "CONFIG_FILE", path)
    for var in ("WAFCHECK_HOST", "WAFCHECK_PORT", "WAFCHECK_PROBE_TIMEOUT", "WAFCHECK_PAYLOADS_URL", "WAFCHECK_PAYLOADS_AUTOLOAD", "WAFCHECK_DOH_URL"):
        monkeypatch.delenv(var, raising=False)
    return path


class TestConfig:

    def test_defaults(self, config_file):
        cfg = config_module.get_config()
        assert cfg.api.port == 8088
        assert cfg.probe.page_limit == 50
        assert cfg.probe.stream_batch_size == 20
        assert cfg.batch.max_urls == 100
        assert cfg.batch.max_concurrency == 5
        assert cfg.batch.default_concurrency == 3
        assert cfg.batch.per_url_timeout == 300
        assert cfg.batch.retention_seconds == 86400
        assert cfg.payloads.autoload is False

    def test_persisted_overrides_merge(self, config_file):
        config_module.save_user_config({"api": {"port": 9001}})
        config_module.save_user_config({"api": {"host": "0.0.0.0"}, "batch": {"max_concurrency": 2}})

        saved = json.loads(config_file.read_text())
        assert saved["api"] == {"port": 9001, "host": "0.0.0.0"}

        cfg = config_module.get_config()
        assert cfg.api.port == 9001
        assert cfg.api.host == "0.0.0.0"
        assert cfg.batch.max_concurrency == 2

    def test_bad_values_are_ignored(self, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"probe": {"timeout": "soon", "nope": 1}}))
        cfg = config_module.get_config()
        assert cfg.probe.timeout == 15.0

    def test_corrupt_file_gives_defaults(self, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text("{broken")
        assert config_module.load_user_config() == {}

    def test_environment_wins(self, config_file, monkeypatch):
        config_module.save_user_config({"api": {"port": 9001}})
        monkeypatch.setenv("WAFCHECK_PORT", "9100")
        monkeypatch.setenv("WAFCHECK_PAYLOADS_AUTOLOAD", "yes")
        monkeypatch.setenv("WAFCHECK_PROBE_TIMEOUT", "4.5")
        cfg = config_module.get_config()
        assert cfg.api.port == 9100
        assert cfg.payloads.autoload is True
        assert cfg.probe.timeout == 4.5

    def test_to_dict(self, config_file):
        data = config_module.get_config().to_dict()
        assert set(data) == {"api", "probe", "batch", "payloads", "recon"}


class TestLogger:

    def test_tagged_output_escapes_markup(self):
        with logger.console.capture() as capture:
            logger.log_info("Detector", "payload [b]not bold[/b]")
        assert "[Detector] payload [b]not bold[/b]" in capture.get()

    def test_debug_needs_verbose(self, monkeypatch):
        monkeypatch.setattr(logger, "_verbose", False)
        with logger.console.capture() as capture:
            logger.log_debug("Executor", "hidden")
        assert capture.get() == ""

        logger.set_verbose(True)
        assert logger.is_verbose()
        with logger.console.capture() as capture:
            logger.log_debug("Executor", "shown")
        assert "[Executor] shown" in capture.get()
