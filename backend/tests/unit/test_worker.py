"""
Unit tests for the orchestrator worker loop
"""
from unittest.mock import AsyncMock

import pytest

from outreach.core.config import ConfigManager
from outreach.domain.models.pipeline import ActionType
from outreach.workers.orchestrator_worker import OrchestratorWorker


def loop_config(tmp_path, tick_interval=0, max_errors=2) -> ConfigManager:
    (tmp_path / "default.yaml").write_text(
        "orchestrator:\n"
        f"  tick_interval_seconds: {tick_interval}\n"
        f"  max_consecutive_errors: {max_errors}\n"
    )
    return ConfigManager(env="test", config_dir=tmp_path)


class TestOrchestratorWorker:
    """Tests for OrchestratorWorker"""

    @pytest.mark.asyncio
    async def test_initialize_reads_config(self, engine):
        """Loop settings come from the orchestrator config section"""
        worker = OrchestratorWorker(engine)
        await worker.initialize()
        assert worker.tick_interval == 30
        assert worker.max_consecutive_errors == 10

    @pytest.mark.asyncio
    async def test_run_once_updates_stats(self, engine, harness, make_stage):
        """A tick is counted along with the candidates it evaluated"""
        await harness.campaign([make_stage(0, ActionType.PROFILE_VIEW, requires_approval=False)])
        await harness.enroll("cand-1")

        worker = OrchestratorWorker(engine)
        report = await worker.run_once()
        await harness.orchestrator.drain()

        assert report.outcomes == {"dispatched": 1}
        stats = worker.get_stats()
        assert stats["ticks"] == 1
        assert stats["evaluated"] == 1
        assert stats["last_tick"]["outcomes"] == {"dispatched": 1}

    @pytest.mark.asyncio
    async def test_run_stops_when_flagged(self, engine, tmp_path):
        """Clearing `running` ends the loop after the current tick"""
        engine.config = loop_config(tmp_path)
        worker = OrchestratorWorker(engine)
        original = worker.run_once

        async def tick_then_stop():
            report = await original()
            worker.running = False
            return report

        worker.run_once = tick_then_stop
        await worker.run()

        stats = worker.get_stats()
        assert stats["running"] is False
        assert stats["ticks"] == 1

    @pytest.mark.asyncio
    async def test_stops_after_consecutive_errors(self, engine, tmp_path):
        """The loop gives up after max_consecutive_errors failed ticks"""
        engine.config = loop_config(tmp_path, max_errors=1)
        worker = OrchestratorWorker(engine)
        worker.run_once = AsyncMock(side_effect=RuntimeError("database unavailable"))

        await worker.run()

        assert worker.run_once.await_count == 1
        assert worker.get_stats()["tick_errors"] == 1
        assert worker.running is False

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, engine):
        """Shutdown can be called more than once"""
        worker = OrchestratorWorker(engine)
        await worker.shutdown()
        await worker.shutdown()
        assert worker.running is False
