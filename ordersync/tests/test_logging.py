"""Logging setup tests"""

import pytest
from loguru import logger

from ordersync.core.logging import LOG_FORMAT, get_logger, resolve_level, sync_scope


@pytest.fixture
def captured():
    lines = []
    sink_id = logger.add(lines.append, format=LOG_FORMAT, level="DEBUG")
    yield lines
    logger.remove(sink_id)


class TestLogging:
    """Sync-scoped loggers and level resolution"""

    def test_sync_context_is_rendered(self, captured):
        get_logger("orchestrator", tenant="shop-a", sync_class="full", category="orders").info("Starting sync")

        assert "orchestrator [shop-a/full/orders]:" in captured[0]
        assert "Starting sync" in captured[0]

    def test_component_logger_has_no_scope(self, captured):
        get_logger("scheduler").info("Scheduled sync finished")

        assert "| scheduler:" in captured[0]
        assert "[" not in captured[0].split("|")[2]

    def test_partial_context(self):
        assert sync_scope({"tenant": "shop-a", "sync_class": "manual"}) == " [shop-a/manual]"
        assert sync_scope({"sync_class": "full"}) == ""

    @pytest.mark.parametrize(
        "raw, production, expected",
        [
            (None, False, "INFO"),
            ("warn", False, "WARNING"),
            ("fatal", False, "CRITICAL"),
            ("verbose", False, "INFO"),
            ("debug", False, "DEBUG"),
            ("debug", True, "INFO"),
            (" error ", True, "ERROR"),
        ],
    )
    def test_resolve_level(self, raw, production, expected):
        assert resolve_level(raw, production) == expected
