from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from referral_engine.services import scheduler as scheduler_module
from referral_engine.services.orchestrator import TickReport


def test_start_scheduler_registers_both_jobs():
    """Both ticks are registered with overlap protection and started."""
    mock_scheduler = MagicMock()
    with patch.object(scheduler_module, "scheduler", mock_scheduler):
        scheduler_module.start_scheduler()

    job_ids = [call.kwargs["id"] for call in mock_scheduler.add_job.call_args_list]
    assert job_ids == ["process_referral_credits", "generate_referral_codes"]
    for call in mock_scheduler.add_job.call_args_list:
        assert call.args[1] == "interval"
        assert call.kwargs["max_instances"] == 1
        assert call.kwargs["coalesce"] is True
        assert call.kwargs["replace_existing"] is True
    mock_scheduler.start.assert_called_once()


@pytest.mark.asyncio
async def test_process_credits_job_runs_orchestrator():
    orchestrator = MagicMock()
    orchestrator.process_referral_credits = AsyncMock(return_value=TickReport(credited=2))
    with patch.object(scheduler_module, "get_orchestrator", return_value=orchestrator):
        await scheduler_module.process_referral_credits_job()
    orchestrator.process_referral_credits.assert_awaited_once()


@pytest.mark.asyncio
async def test_jobs_swallow_exceptions():
    """A failing tick is logged; the scheduler keeps running."""
    orchestrator = MagicMock()
    orchestrator.process_referral_credits = AsyncMock(side_effect=RuntimeError("db down"))
    orchestrator.generate_missing_referral_codes = AsyncMock(side_effect=RuntimeError("db down"))
    with patch.object(scheduler_module, "get_orchestrator", return_value=orchestrator):
        await scheduler_module.process_referral_credits_job()
        await scheduler_module.generate_referral_codes_job()

    orchestrator.generate_missing_referral_codes.assert_awaited_once()


@pytest.mark.asyncio
async def test_shutdown_drains_orchestrator():
    mock_scheduler = MagicMock()
    mock_scheduler.running = True
    orchestrator = MagicMock()
    orchestrator.drain = AsyncMock()
    with (
        patch.object(scheduler_module, "scheduler", mock_scheduler),
        patch.object(scheduler_module, "_orchestrator", orchestrator),
    ):
        await scheduler_module.shutdown_scheduler()

    mock_scheduler.shutdown.assert_called_once_with(wait=False)
    orchestrator.drain.assert_awaited_once()
