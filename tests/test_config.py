"""
Tests for qflash Configuration
==============================
"""

import pytest

from qflash.config import (
    DEFAULT_PORT,
    FlashConfig,
    get_default_config,
    set_default_config,
)

ENV_VARS = (
    "QFLASH_PORT",
    "QFLASH_BAUD",
    "QFLASH_LATENCY",
    "QFLASH_PROTECT",
    "QFLASH_RESET",
    "QFLASH_PROGRESS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    set_default_config(None)
    yield monkeypatch
    set_default_config(None)


class TestFlashConfig:

    def test_defaults(self):
        config = FlashConfig()
        assert config.port == DEFAULT_PORT == "/dev/serial/by-id/usb-1d50_6140-if00"
        assert config.baud_rate == 115200
        assert config.latency == 1.0
        assert config.read_timeout == 1.0
        assert config.protect == 0x40000
        assert config.reset is False
        assert config.progress is True

    def test_invalid_latency(self):
        with pytest.raises(ValueError, match="latency"):
            FlashConfig(latency=0)

    def test_invalid_protect(self):
        with pytest.raises(ValueError, match="protect"):
            FlashConfig(protect=-1)

    def test_with_overrides_skips_none(self):
        config = FlashConfig(port="/dev/ttyACM0")
        updated = config.with_overrides(port=None, protect=0, latency=2.0)
        assert updated.port == "/dev/ttyACM0"
        assert updated.protect == 0
        assert updated.latency == 2.0
        # Original untouched
        assert config.protect == 0x40000

    def test_with_overrides_validates(self):
        with pytest.raises(ValueError):
            FlashConfig().with_overrides(latency=-1.0)


class TestFromEnv:

    def test_no_environment(self, clean_env):
        assert FlashConfig.from_env() == FlashConfig()

    def test_all_variables(self, clean_env):
        clean_env.setenv("QFLASH_PORT", "/dev/ttyACM3")
        clean_env.setenv("QFLASH_BAUD", "57600")
        clean_env.setenv("QFLASH_LATENCY", "2.5")
        clean_env.setenv("QFLASH_PROTECT", "0x20000")
        clean_env.setenv("QFLASH_RESET", "yes")
        clean_env.setenv("QFLASH_PROGRESS", "0")

        config = FlashConfig.from_env()

        assert config.port == "/dev/ttyACM3"
        assert config.baud_rate == 57600
        assert config.latency == 2.5
        assert config.protect == 0x20000
        assert config.reset is True
        assert config.progress is False

    def test_decimal_protect(self, clean_env):
        clean_env.setenv("QFLASH_PROTECT", "0")
        assert FlashConfig.from_env().protect == 0

    @pytest.mark.parametrize("name,value", [
        ("QFLASH_BAUD", "fast"),
        ("QFLASH_LATENCY", "soon"),
        ("QFLASH_PROTECT", "0xZZ"),
        ("QFLASH_RESET", "maybe"),
        ("QFLASH_LATENCY", "-1"),
    ])
    def test_invalid_values(self, clean_env, name, value):
        clean_env.setenv(name, value)
        with pytest.raises(ValueError, match=name):
            FlashConfig.from_env()


class TestDefaultConfig:

    def test_built_from_environment(self, clean_env):
        clean_env.setenv("QFLASH_PORT", "/dev/ttyACM9")
        assert get_default_config().port == "/dev/ttyACM9"

    def test_cached(self, clean_env):
        assert get_default_config() is get_default_config()

    def test_set_and_reset(self, clean_env):
        custom = FlashConfig(port="/dev/custom")
        set_default_config(custom)
        assert get_default_config() is custom
        set_default_config(None)
        assert get_default_config() is not custom
