"""
Unit tests for configuration and logging.

Coverage targets:
- ExecutionConfig environment loading and validation
- with_overrides skipping None values
- Error context helpers
- Structured logger event helpers and correlation IDs
"""

import json
import logging

import pytest

from evmsim.core.config import ExecutionConfig
from evmsim.core.logging_config import setup_logging
from evmsim.core.simulation_exceptions import (
    AgentError,
    ConfigurationError,
    InvalidSnapshotError,
    StateConflictError,
    get_error_context,
    is_fatal_error,
)
from evmsim.core.structured_logger import LogContext, PerformanceTimer, StructuredLogger


class TestExecutionConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("EVMSIM_CHAIN_ID", "1")
        monkeypatch.setenv("EVMSIM_MAX_SNAPSHOTS", "0x10")
        monkeypatch.setenv("EVMSIM_PARALLEL_OBSERVE", "yes")
        monkeypatch.setenv("EVMSIM_SNAPSHOT_EVERY_STEP", "false")
        config = ExecutionConfig.from_env()
        assert config.chain_id == 1
        assert config.max_snapshots == 16
        assert config.parallel_observe is True
        assert config.snapshot_every_step is False

    @pytest.mark.parametrize(
        "env_var,value",
        [("EVMSIM_CHAIN_ID", "mainnet"), ("EVMSIM_CHAIN_ID", "0"), ("EVMSIM_BLOCK_GAS_LIMIT", "100")],
    )
    def test_from_env_rejects_bad_values(self, monkeypatch, env_var, value):
        monkeypatch.setenv(env_var, value)
        with pytest.raises(ConfigurationError):
            ExecutionConfig.from_env()

    def test_default_gas_limit_cannot_exceed_block(self):
        with pytest.raises(ConfigurationError):
            ExecutionConfig(default_gas_limit=2_000_000, block_gas_limit=1_000_000)

    def test_with_overrides_skips_none(self, config):
        updated = config.with_overrides(chain_id=5, max_snapshots=None)
        assert updated.chain_id == 5
        assert updated.max_snapshots == config.max_snapshots
        assert config.chain_id == 31337


class TestErrors:
    def test_fatal_classification(self):
        assert is_fatal_error(InvalidSnapshotError("gone"))
        assert is_fatal_error(StateConflictError("conflict"))
        assert not is_fatal_error(ValueError("plain"))

    def test_error_context(self):
        context = get_error_context(AgentError("bad agent", details={"agent": "alice"}))
        assert context["error_type"] == "AgentError"
        assert context["error_message"] == "bad agent"
        assert context["details"] == {"agent": "alice"}


class TestStructuredLogger:
    def test_event_helpers_emit_json(self, caplog):
        logger = StructuredLogger(name="evmsim.test_events", log_dir="", log_level="DEBUG")
        with caplog.at_level(logging.DEBUG, logger="evmsim.test_events"):
            with LogContext("cid-1"):
                logger.step_settled(step=3, tx_count=2, failures=1, state_root="0xabc")
                logger.fatal_halt(4, "boom", error_type="StateConflictError")
        messages = [record.getMessage() for record in caplog.records]
        assert len(messages) == 2
        stats = logger.get_stats()
        assert stats["total_logs"] == 2

    def test_performance_timer_records_duration(self):
        logger = StructuredLogger(name="evmsim.test_timer", log_dir="", log_level="DEBUG")
        with PerformanceTimer(logger, "unit.op") as timer:
            pass
        assert timer.duration_ms >= 0
        assert "unit.op" in logger.get_stats()["performance_metrics"]


def test_setup_logging_writes_json_file(tmp_path):
    log_file = tmp_path / "run.json.log"
    logger = setup_logging(name="evmsim.test_setup", log_file=str(log_file), level="INFO", enable_console=False)
    logger.info("hello", extra={"event": "test.hello"})
    for handler in logger.handlers:
        handler.flush()
    record = json.loads(log_file.read_text().strip().splitlines()[-1])
    assert record["message"] == "hello"
    assert record["event"] == "test.hello"
