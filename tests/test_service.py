"""
Tests for service mode wiring
"""
import pytest

from meerkat.fsmonitor.monitor import DirectoryMonitor
from meerkat.service import ServiceMode, Session, build_bot
from meerkat.utils.config import Config
from tests.conftest import FakeClient


@pytest.fixture
def config(tmp_path):
    config = Config()
    config.telegram.token = "t"
    config.telegram.chat_ids = [1]
    config.public_ip.storage_dirs = [tmp_path / "cache"]
    config.sensor.device_path = tmp_path / "w1_slave"
    return config


class TestBuildBot:

    def test_no_modes_registers_nothing(self, config):
        bot = build_bot(config, ServiceMode.NONE, FakeClient())

        assert bot.handlers == {}
        assert bot.periodic_tasks == []
        assert bot.background_functions == []

    def test_commands_and_healthcheck(self, config):
        config.image_url = "http://camera/snapshot.jpg"

        bot = build_bot(config, ServiceMode.COMMANDS | ServiceMode.HEALTHCHECK, FakeClient())

        assert sorted(bot.handlers) == ["/pic", "/ping", "/temp"]

    def test_pic_needs_image_url(self, config):
        bot = build_bot(config, ServiceMode.COMMANDS, FakeClient())

        assert sorted(bot.handlers) == ["/temp"]

    def test_periodic_modes(self, config):
        bot = build_bot(config, ServiceMode.PERIODIC | ServiceMode.TEMPMONITOR, FakeClient())

        assert [(t.intro, t.interval) for t in bot.periodic_tasks] == [
            ("Public IP Changed:", 6),
            ("Temperature changed:", 1),
        ]

    def test_fsmonitor_skips_missing_directories(self, config, tmp_path):
        config.monitor.directories = [tmp_path, tmp_path / "missing"]
        session = Session.from_config(config)

        bot = build_bot(config, ServiceMode.FSMONITOR, FakeClient(), session)

        assert len(bot.background_functions) == 1
        assert isinstance(bot.background_functions[0], DirectoryMonitor)
        assert session.monitors[0].directory == str(tmp_path)
