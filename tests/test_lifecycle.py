"""Tests for the exit span lifecycle: exactly-once close on every completion path."""

import asyncio
import concurrent.futures
import threading

import pytest
from unittest.mock import MagicMock

from rpctrace.lifecycle import (
    URL_TAG,
    LifecycleError,
    LifecycleState,
    SpanLifecycle,
    settled_error,
)
from rpctrace.tracing.base import ContextSnapshot, TracerBackend
from rpctrace.tracing.context import get_current_context, set_current_context
from rpctrace.tracing.span import Span
from rpctrace.tracing.tracer import Tracer
from rpctrace.types import COMPONENT_ID, Component, Endpoint, SpanLayer

ENDPOINT = Endpoint(protocol="custom", host="10.0.0.1", port=20880)
OPERATION = "UserService.getUser(Long)"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_mock_tracer() -> MagicMock:
    """Create a mock tracer whose exit spans are mocks too."""
    tracer = MagicMock(spec=TracerBackend)
    tracer.create_exit_span.return_value = MagicMock(spec=Span)
    tracer.capture.return_value = ContextSnapshot(trace_id="a" * 32, span_id="b" * 16)
    return tracer


class RecordingTracer(Tracer):
    """Tracer that remembers where and with what context continuations ran."""

    def __init__(self) -> None:
        super().__init__(service_id="svc-test")
        self.continuations: list[tuple[int, Span | None]] = []

    def continued(self, snapshot: ContextSnapshot) -> None:
        super().continued(snapshot)
        self.continuations.append((threading.get_ident(), self.active_span()))


def _wait_for_callbacks(future: concurrent.futures.Future) -> threading.Event:
    """Event set once every callback registered before it has run."""
    done = threading.Event()
    future.add_done_callback(lambda _: done.set())
    return done


@pytest.fixture(autouse=True)
def _reset_context():
    """Ensure each test starts with a clean span context."""
    set_current_context(None)
    yield
    set_current_context(None)


# ===================================================================
# 1. Opening
# ===================================================================

class TestOpen:
    """Test creation and tagging of the exit span."""

    def test_open_tags_span(self):
        """open should tag URL, component and layer, and use host:port as peer."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)

        span = lifecycle.open(OPERATION, ENDPOINT, "custom")

        tracer.create_exit_span.assert_called_once_with(OPERATION, lifecycle.carrier, "10.0.0.1:20880")
        span.set_tag.assert_called_once_with(
            URL_TAG, "custom://10.0.0.1:20880/UserService.getUser(Long)"
        )
        span.set_component.assert_called_once_with(Component(id=COMPONENT_ID, name="custom"))
        span.set_layer.assert_called_once_with(SpanLayer.RPC_FRAMEWORK)
        assert lifecycle.state is LifecycleState.ACTIVE
        assert lifecycle.span is span

    def test_component_uses_resolved_protocol(self):
        """The component name should be the protocol passed in, not the endpoint's."""
        tracer = _make_mock_tracer()
        span = SpanLifecycle(tracer).open(OPERATION, ENDPOINT, "joy")
        span.set_component.assert_called_once_with(Component(id=2000, name="joy"))

    def test_open_twice_rejected(self):
        """A lifecycle should open only one span."""
        lifecycle = SpanLifecycle(_make_mock_tracer())
        lifecycle.open(OPERATION, ENDPOINT, "custom")
        with pytest.raises(LifecycleError):
            lifecycle.open(OPERATION, ENDPOINT, "custom")

    def test_close_before_open_rejected(self):
        """Closing without a span should be reported as misuse."""
        with pytest.raises(LifecycleError, match="not been opened"):
            SpanLifecycle(_make_mock_tracer()).close_sync()

    def test_record_error_before_open_rejected(self):
        """Recording an error without a span should be reported as misuse."""
        with pytest.raises(LifecycleError):
            SpanLifecycle(_make_mock_tracer()).record_error(ValueError("x"))


# ===================================================================
# 2. Synchronous close
# ===================================================================

class TestCloseSync:
    """Test closing right after a synchronous call."""

    def test_close_once(self):
        """close_sync should stop the span exactly once."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)
        span = lifecycle.open(OPERATION, ENDPOINT, "custom")

        lifecycle.close_sync()

        tracer.stop_span.assert_called_once_with(span)
        assert lifecycle.state is LifecycleState.CLOSED

    def test_second_close_is_noop(self):
        """Closing an already closed span should never reach the tracer again."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)
        lifecycle.open(OPERATION, ENDPOINT, "custom")

        lifecycle.close_sync()
        lifecycle.close_sync()
        lifecycle.close_sync()

        assert tracer.stop_span.call_count == 1

    def test_error_then_close(self):
        """An error should be marked and logged before the span closes."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)
        span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        error = ValueError("bad id")

        lifecycle.record_error(error)
        lifecycle.close_sync()

        span.error_occurred.assert_called_once_with()
        span.log.assert_called_once_with(error)
        tracer.stop_span.assert_called_once_with(span)
        assert lifecycle.error_recorded

    def test_same_error_recorded_once(self):
        """The same exception reported twice should be logged once."""
        lifecycle = SpanLifecycle(_make_mock_tracer())
        span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        error = ValueError("bad id")

        lifecycle.record_error(error)
        lifecycle.record_error(error)

        assert span.log.call_count == 1

    def test_error_after_close_ignored(self):
        """Errors reported after close should not touch the span."""
        lifecycle = SpanLifecycle(_make_mock_tracer())
        span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        lifecycle.close_sync()

        lifecycle.record_error(ValueError("late"))

        span.error_occurred.assert_not_called()

    def test_close_sync_while_suspended_rejected(self):
        """A pending async span should not be closed synchronously."""
        lifecycle = SpanLifecycle(_make_mock_tracer())
        lifecycle.open(OPERATION, ENDPOINT, "custom")
        lifecycle.close_async(concurrent.futures.Future())

        with pytest.raises(LifecycleError, match="asynchronous"):
            lifecycle.close_sync()

    def test_real_tracer_records_one_span(self):
        """With the built-in tracer one finished span should be recorded."""
        tracer = Tracer(service_id="svc-test")
        lifecycle = SpanLifecycle(tracer)
        lifecycle.open(OPERATION, ENDPOINT, "custom")

        lifecycle.close_sync()
        lifecycle.close_sync()

        finished = tracer.finished_spans()
        assert len(finished) == 1
        assert finished[0].operation_name == OPERATION
        assert finished[0].error_occurred is False
        assert get_current_context() is None


# ===================================================================
# 3. Asynchronous close
# ===================================================================

class TestCloseAsync:
    """Test closing deferred to a pending result."""

    def test_close_deferred_until_settled(self):
        """The span should stay open until the future settles."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)
        span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        future: concurrent.futures.Future = concurrent.futures.Future()

        lifecycle.close_async(future)

        assert lifecycle.state is LifecycleState.SUSPENDED
        tracer.capture.assert_called_once_with(span)
        tracer.deactivate.assert_called_once_with(span)
        tracer.stop_span.assert_not_called()

        future.set_result("ok")

        tracer.continued.assert_called_once_with(lifecycle.snapshot)
        tracer.stop_span.assert_called_once_with(span)
        span.error_occurred.assert_not_called()
        assert lifecycle.state is LifecycleState.CLOSED

    def test_failure_marks_error_before_close(self):
        """A failed future should mark the span errored, then close it once."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)
        span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        order: list[str] = []
        span.error_occurred.side_effect = lambda: order.append("error")
        tracer.stop_span.side_effect = lambda _: order.append("stop")
        future: concurrent.futures.Future = concurrent.futures.Future()
        error = ConnectionError("reset by peer")

        lifecycle.close_async(future)
        future.set_exception(error)

        assert order == ["error", "stop"]
        span.log.assert_called_once_with(error)
        assert tracer.stop_span.call_count == 1

    def test_cancellation_counts_as_failure(self):
        """A cancelled future should close the span as errored."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)
        span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        future: concurrent.futures.Future = concurrent.futures.Future()

        lifecycle.close_async(future)
        future.cancel()

        span.error_occurred.assert_called_once_with()
        assert isinstance(span.log.call_args.args[0], concurrent.futures.CancelledError)
        tracer.stop_span.assert_called_once_with(span)

    def test_already_settled_future(self):
        """A future that is already done should close the span immediately."""
        tracer = _make_mock_tracer()
        lifecycle = SpanLifecycle(tracer)
        lifecycle.open(OPERATION, ENDPOINT, "custom")
        future: concurrent.futures.Future = concurrent.futures.Future()
        future.set_result(1)

        lifecycle.close_async(future)

        assert tracer.stop_span.call_count == 1
        assert lifecycle.state is LifecycleState.CLOSED

    def test_close_async_twice_rejected(self):
        """Only an active span can be suspended."""
        lifecycle = SpanLifecycle(_make_mock_tracer())
        lifecycle.open(OPERATION, ENDPOINT, "custom")
        lifecycle.close_async(concurrent.futures.Future())

        with pytest.raises(LifecycleError):
            lifecycle.close_async(concurrent.futures.Future())

    def test_caller_context_restored(self):
        """After suspending, the caller should be back on its own span."""
        tracer = Tracer()
        parent = tracer.start_span("handler")
        lifecycle = SpanLifecycle(tracer)
        exit_span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        assert get_current_context().span_id == exit_span.span_id

        future: concurrent.futures.Future = concurrent.futures.Future()
        lifecycle.close_async(future)

        assert get_current_context().span_id == parent.span_id
        future.set_result(None)
        assert get_current_context().span_id == parent.span_id
        assert tracer.finished_spans()[0].parent_span_id == parent.span_id

    def test_completion_on_worker_thread(self):
        """The callback should resume the captured span on the worker thread."""
        tracer = RecordingTracer()
        lifecycle = SpanLifecycle(tracer)
        exit_span = lifecycle.open(OPERATION, ENDPOINT, "custom")
        release = threading.Event()

        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(release.wait, 5)
            lifecycle.close_async(future)
            done = _wait_for_callbacks(future)
            assert tracer.finished_spans() == []
            release.set()
            assert done.wait(5)

        thread_id, active = tracer.continuations[0]
        assert thread_id != threading.get_ident()
        assert active is exit_span
        assert len(tracer.finished_spans()) == 1
        assert get_current_context() is None

    def test_many_concurrent_calls(self):
        """Concurrent calls should each produce exactly one finished span."""
        tracer = Tracer()
        futures = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=4) as executor:
            for index in range(20):
                lifecycle = SpanLifecycle(tracer)
                lifecycle.open(f"Svc.call{index}()", ENDPOINT, "custom")
                future = executor.submit(lambda i=index: i)
                lifecycle.close_async(future)
                futures.append(_wait_for_callbacks(future))
            for done in futures:
                assert done.wait(5)

        names = sorted(span.operation_name for span in tracer.finished_spans())
        assert names == sorted(f"Svc.call{index}()" for index in range(20))

    @pytest.mark.asyncio
    async def test_asyncio_future_failure(self):
        """An asyncio future failing later should close the span as errored."""
        tracer = Tracer()
        lifecycle = SpanLifecycle(tracer)
        lifecycle.open(OPERATION, ENDPOINT, "custom")
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        lifecycle.close_async(future)
        loop.call_later(0.01, future.set_exception, RuntimeError("timeout"))

        with pytest.raises(RuntimeError, match="timeout"):
            await future
        await asyncio.sleep(0)

        finished = tracer.finished_spans()
        assert len(finished) == 1
        assert finished[0].error_occurred is True
        assert finished[0].logs[0].fields["error.kind"] == "RuntimeError"
        assert finished[0].logs[0].fields["message"] == "timeout"

    @pytest.mark.asyncio
    async def test_asyncio_future_cancelled(self):
        """A cancelled asyncio future should record asyncio.CancelledError."""
        tracer = Tracer()
        lifecycle = SpanLifecycle(tracer)
        lifecycle.open(OPERATION, ENDPOINT, "custom")
        future = asyncio.get_running_loop().create_future()

        lifecycle.close_async(future)
        future.cancel()
        await asyncio.sleep(0)

        finished = tracer.finished_spans()
        assert len(finished) == 1
        assert finished[0].logs[0].fields["error.kind"] == "CancelledError"


class TestSettledError:
    """Test extraction of the failure carried by a settled future."""

    def test_success(self):
        """A successful future carries no error."""
        future: concurrent.futures.Future = concurrent.futures.Future()
        future.set_result(1)
        assert settled_error(future) is None

    def test_exception(self):
        """A failed future carries its exception."""
        future: concurrent.futures.Future = concurrent.futures.Future()
        error = KeyError("k")
        future.set_exception(error)
        assert settled_error(future) is error

    def test_cancelled(self):
        """A cancelled future reports CancelledError."""
        future: concurrent.futures.Future = concurrent.futures.Future()
        future.cancel()
        assert isinstance(settled_error(future), concurrent.futures.CancelledError)
