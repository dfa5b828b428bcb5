#!/usr/bin/env python3
"""
grnctl logging setup tests.
"""

import io
import logging
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from grnctl.console import (  # noqa: E402
    RESET,
    SUCCESS,
    ColorFormatter,
    configure_logging,
    success,
    supports_colors,
)


class TestSupportsColors:
    def test_no_color_wins(self):
        assert supports_colors(io.StringIO(), {"NO_COLOR": "1", "COLORTERM": "truecolor"}) is False

    def test_plain_stream_without_terminal_hints(self):
        assert supports_colors(io.StringIO(), {}) is False

    def test_terminal_hints(self):
        assert supports_colors(io.StringIO(), {"TERM": "xterm-256color"}) is True
        assert supports_colors(io.StringIO(), {"COLORTERM": "truecolor"}) is True


class TestLogging:
    def test_success_level_is_registered(self):
        assert logging.getLevelName(SUCCESS) == "SUCCESS"

    def test_format_without_colors(self):
        stream = io.StringIO()
        configure_logging("INFO", environ={}, stream=stream)

        success(logging.getLogger("grnctl.test"), "network created")
        logging.getLogger("grnctl.test").debug("hidden")

        assert stream.getvalue() == "[SUCCESS] network created\n"

    def test_colored_tag(self):
        record = logging.LogRecord("grnctl", logging.ERROR, __file__, 1, "failed", None, None)

        formatted = ColorFormatter(use_colors=True).format(record)

        assert formatted.endswith(f"[ERROR]{RESET} failed")
