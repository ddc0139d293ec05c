"""Tests for the server-continuation resync controller."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ar_sync.controller import ControllerState
from ar_sync.errors import ConfigurationError, InvalidTransitionError, SupabaseAPIError
from ar_sync.models import ResyncResult
from ar_sync.resync import ResyncController, describe_error


def result(**data) -> ResyncResult:
    return ResyncResult.from_dict({"success": True, **data})


@pytest.fixture
def source():
    source = AsyncMock()
    source.resync_payment_applications = AsyncMock()
    return source


def make_controller(source, **kwargs) -> ResyncController:
    kwargs.setdefault("batch_size", 50)
    kwargs.setdefault("delay", 0)
    return ResyncController(source, **kwargs)


class TestResyncLoop:
    """Tests for the offset continuation loop."""

    @pytest.mark.asyncio
    async def test_two_batches_to_completion(self, source):
        source.resync_payment_applications.side_effect = [
            result(processed=50, nextSkip=50, complete=False, totalPayments=70, remaining=20,
                   totalApplications=80, breakdown={"invoices": 70, "creditMemos": 10}),
            result(processed=20, nextSkip=70, complete=True, totalPayments=70, remaining=0,
                   totalApplications=25, breakdown={"invoices": 20, "other": 5}),
        ]
        controller = make_controller(source)

        totals = await controller.start()

        assert source.resync_payment_applications.await_count == 2
        assert [c.args for c in source.resync_payment_applications.await_args_list] == [
            (50, 0, False),
            (50, 50, False),
        ]
        assert totals.processed == 70
        assert totals.applications == 105
        assert totals.invoices == 90
        assert totals.credit_memos == 10
        assert totals.other == 5
        assert controller.progress_percent == 100
        assert controller.state is ControllerState.COMPLETED
        assert controller.is_running is False
        assert controller.current_skip == 70
        assert [(b.batch, b.skip, b.processed) for b in controller.batch_logs] == [
            (1, 0, 50),
            (2, 50, 20),
        ]

    @pytest.mark.asyncio
    async def test_clear_first_only_on_first_call(self, source):
        source.resync_payment_applications.side_effect = [
            result(processed=50, nextSkip=50, totalPayments=100, remaining=50),
            result(processed=50, nextSkip=100, complete=True, totalPayments=100),
        ]
        controller = make_controller(source, clear_first=True)

        await controller.start()

        flags = [c.args[2] for c in source.resync_payment_applications.await_args_list]
        assert flags == [True, False]

    @pytest.mark.asyncio
    async def test_resume_from_offset_never_clears(self, source):
        source.resync_payment_applications.return_value = result(
            processed=50, nextSkip=250, complete=True, totalPayments=250
        )
        controller = make_controller(source, clear_first=True)
        controller.configure(start_offset=200)

        await controller.start()

        source.resync_payment_applications.assert_awaited_once_with(50, 200, False)

    @pytest.mark.asyncio
    async def test_missing_next_skip_advances_by_batch_size(self, source):
        source.resync_payment_applications.side_effect = [
            result(processed=50, totalPayments=100, remaining=50),
            result(processed=50, complete=True, totalPayments=100),
        ]
        controller = make_controller(source)

        await controller.start()

        skips = [c.args[1] for c in source.resync_payment_applications.await_args_list]
        assert skips == [0, 50]

    @pytest.mark.asyncio
    async def test_non_advancing_next_skip(self, source):
        source.resync_payment_applications.side_effect = [
            result(processed=50, nextSkip=50, totalPayments=200, remaining=150),
            result(processed=50, nextSkip=50, totalPayments=200, remaining=100),
            result(processed=50, complete=True, totalPayments=200),
        ]
        controller = make_controller(source)

        await controller.start()

        skips = [c.args[1] for c in source.resync_payment_applications.await_args_list]
        assert skips == [0, 50, 100]

    @pytest.mark.asyncio
    async def test_delay_between_batches(self, source, monkeypatch):
        source.resync_payment_applications.side_effect = [
            result(processed=50, nextSkip=50, totalPayments=100, remaining=50),
            result(processed=50, nextSkip=100, complete=True, totalPayments=100),
        ]
        sleep = AsyncMock()
        monkeypatch.setattr("ar_sync.resync.asyncio.sleep", sleep)
        controller = make_controller(source, delay=0.5)

        await controller.start()

        sleep.assert_awaited_once_with(0.5)


class TestResyncFailures:
    """Tests for fatal batch failures."""

    @pytest.mark.asyncio
    async def test_unsuccessful_response_halts(self, source):
        source.resync_payment_applications.side_effect = [
            result(processed=50, nextSkip=50, totalPayments=200, remaining=150),
            ResyncResult.from_dict({"success": False, "error": "Acumatica session expired"}),
        ]
        controller = make_controller(source)

        totals = await controller.start()

        assert source.resync_payment_applications.await_count == 2
        assert controller.is_running is False
        assert controller.is_paused is False
        assert controller.state is ControllerState.FAILED
        assert controller.error == "Acumatica session expired"
        assert controller.current_skip == 50
        assert totals.processed == 50

    @pytest.mark.asyncio
    async def test_raised_error_uses_server_message(self, source):
        source.resync_payment_applications.side_effect = SupabaseAPIError(
            "HTTP 500", status_code=500, details={"error": "Edge function timed out"}
        )
        controller = make_controller(source)

        await controller.start()

        assert controller.state is ControllerState.FAILED
        assert controller.error == "Edge function timed out"

    @pytest.mark.asyncio
    async def test_failed_run_resumes_from_current_skip(self, source):
        source.resync_payment_applications.side_effect = [
            result(processed=50, nextSkip=50, totalPayments=100, remaining=50),
            SupabaseAPIError("HTTP 502", status_code=502),
            result(processed=50, nextSkip=100, complete=True, totalPayments=100),
        ]
        controller = make_controller(source, clear_first=True)

        await controller.start()
        assert controller.error == "HTTP 502"

        totals = await controller.start()

        assert source.resync_payment_applications.await_args_list[-1].args == (50, 50, False)
        assert controller.error is None
        assert controller.state is ControllerState.COMPLETED
        assert totals.processed == 100

    def test_describe_error(self):
        assert describe_error(SupabaseAPIError("HTTP 400", details={"message": "bad"})) == "bad"
        assert describe_error(SupabaseAPIError("HTTP 400", details="plain")) == "HTTP 400"
        assert describe_error(ValueError("boom")) == "boom"


class TestResyncControls:
    """Tests for pause, reset and configure."""

    @pytest.mark.asyncio
    async def test_pause_stops_after_current_batch(self, source):
        controller = make_controller(source)
        calls = 0

        async def resync(batch_size, skip, clear_first=False):
            nonlocal calls
            calls += 1
            if calls == 2:
                controller.pause()
            return result(processed=50, nextSkip=skip + 50, totalPayments=500,
                          remaining=500 - skip - 50)

        source.resync_payment_applications.side_effect = resync

        await controller.start()

        assert calls == 2
        assert controller.is_paused is True
        assert controller.is_running is False
        assert controller.state is ControllerState.PAUSED
        assert controller.current_skip == 100
        assert controller.progress_percent == 20

        source.resync_payment_applications.side_effect = None
        source.resync_payment_applications.return_value = result(
            processed=400, nextSkip=500, complete=True, totalPayments=500
        )
        totals = await controller.start()

        assert source.resync_payment_applications.await_args_list[-1].args == (50, 100, False)
        assert totals.processed == 500
        assert controller.is_paused is False

    @pytest.mark.asyncio
    async def test_start_and_configure_rejected_while_running(self, source):
        gate = asyncio.Event()

        async def resync(batch_size, skip, clear_first=False):
            await gate.wait()
            return result(processed=50, complete=True, totalPayments=50)

        source.resync_payment_applications.side_effect = resync
        controller = make_controller(source)
        task = asyncio.create_task(controller.start())
        await asyncio.sleep(0)

        with pytest.raises(InvalidTransitionError):
            await controller.start()
        with pytest.raises(InvalidTransitionError):
            controller.configure(batch_size=10)
        with pytest.raises(InvalidTransitionError):
            controller.reset()

        gate.set()
        await task
        assert controller.state is ControllerState.COMPLETED

    @pytest.mark.asyncio
    async def test_reset(self, source):
        source.resync_payment_applications.return_value = result(
            processed=50, nextSkip=50, complete=True, totalPayments=50
        )
        controller = make_controller(source)
        await controller.start()

        controller.reset()

        assert controller.current_skip == 0
        assert controller.totals.processed == 0
        assert controller.batch_logs == []
        assert controller.progress is None
        assert controller.state is ControllerState.IDLE

    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"batch_size": -5}, {"log_limit": 0}])
    def test_rejects_invalid_construction(self, source, kwargs):
        with pytest.raises(ConfigurationError):
            ResyncController(source, delay=0, **kwargs)

        source.resync_payment_applications.assert_not_awaited()

    def test_configure_validates(self, source):
        controller = make_controller(source)

        with pytest.raises(ConfigurationError):
            controller.configure(batch_size=0)
        with pytest.raises(ConfigurationError):
            controller.configure(start_offset=-1)

        controller.configure(batch_size=25, clear_first=True)
        assert controller.batch_size == 25
        assert controller.clear_first is True

    def test_pause_when_idle(self, source):
        with pytest.raises(InvalidTransitionError):
            make_controller(source).pause()

    def test_percent_with_no_progress(self, source):
        assert make_controller(source).progress_percent == 0

    @pytest.mark.asyncio
    async def test_percent_rounds_half_up(self, source):
        source.resync_payment_applications.return_value = result(
            processed=1, nextSkip=1, complete=True, totalPayments=8, remaining=7
        )
        controller = make_controller(source)

        await controller.start()

        # 1/8 = 12.5%
        assert controller.progress_percent == 13

    @pytest.mark.asyncio
    async def test_percent_with_zero_total(self, source):
        source.resync_payment_applications.return_value = result(complete=True, totalPayments=0)
        controller = make_controller(source)

        await controller.start()

        assert controller.progress_percent == 0
