import re
from pathlib import Path

import pytest
from loguru import logger

from kubeward.observability import LogConfig, setup_logging, teardown_logging

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestSetupLogging:
    def test_file_handler_carries_context(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "kubeward.log"
        handlers = setup_logging(LogConfig(file=str(log_file)))
        try:
            logger.bind(cluster="dev", step="network").info("VPC created")
        finally:
            teardown_logging(handlers)

        text = log_file.read_text()
        assert "[cluster=dev step=network] - VPC created" in text

    def test_no_context_no_brackets(self, tmp_path: Path):
        log_file = tmp_path / "kubeward.log"
        handlers = setup_logging(LogConfig(file=str(log_file)))
        try:
            logger.info("plain")
        finally:
            teardown_logging(handlers)

        assert re.search(r":\d+ - plain", log_file.read_text())

    def test_console_only(self):
        handlers = setup_logging(LogConfig(file="", console=True, level="WARNING"))
        try:
            assert len(handlers) == 1
        finally:
            teardown_logging(handlers)

    def test_disabled(self):
        handlers = setup_logging(LogConfig(file=""))
        teardown_logging(handlers)
        assert handlers == []
