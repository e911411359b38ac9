import logging

from prd_engine.core.logging import LOGGING_CONFIG
from prd_engine.core.logging import setup_logging


def test_setup_logging_configures_engine_logger():
    setup_logging()
    engine = logging.getLogger("prd_engine")
    assert engine.level == logging.DEBUG
    assert engine.propagate is False
    assert "engine" in LOGGING_CONFIG["handlers"]
