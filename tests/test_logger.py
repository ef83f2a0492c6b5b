"""
Tests for logging setup
"""
import json
import logging

import pytest

from meerkat.utils.logger import MASK, make_formatter, setup_logging

TOKEN = "123456:ABC-secret"


def make_record(msg, **extra):
    record = logging.LogRecord("meerkat.test", logging.WARNING, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    @pytest.mark.parametrize("log_format", ["text", "color", "json"])
    def test_token_is_masked(self, log_format):
        formatter = make_formatter(log_format, secrets=[TOKEN, ""])
        url = f"https://api.telegram.org/bot{TOKEN}/sendMessage"

        output = formatter.format(make_record(f"Telegram API failure: {url}"))

        assert TOKEN not in output
        assert f"bot{MASK}/sendMessage" in output

    def test_json_carries_context_fields(self):
        formatter = make_formatter("json")

        output = json.loads(formatter.format(make_record("New file", path="/srv/cam/a.jpg")))

        assert output['message'] == "New file"
        assert output['level'] == "WARNING"
        assert output['path'] == "/srv/cam/a.jpg"
        assert 'chat_id' not in output

    def test_color_leaves_record_untouched(self):
        record = make_record("hello")

        make_formatter("color").format(record)

        assert record.levelname == "WARNING"


class TestSetupLogging:

    def test_file_handler_without_colors(self, tmp_path):
        log_file = tmp_path / "logs" / "meerkat.log"
        root = setup_logging("INFO", str(log_file), "color", secrets=[TOKEN])
        try:
            logging.getLogger("meerkat.test").warning(f"token {TOKEN}")
            for handler in root.handlers:
                handler.flush()

            content = log_file.read_text(encoding="utf-8")
            assert f"token {MASK}" in content
            assert "\033[" not in content
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            for handler in root.handlers[:]:
                handler.close()
                root.removeHandler(handler)
