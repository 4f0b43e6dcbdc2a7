"""
Tests for ChatTemplatingProcessor lifecycle: initialize, finalize and the
readiness guard.

Maps to: chatbridge/processor.py
"""

import logging

import pytest

from chatbridge import config
from chatbridge.exceptions import (
    LibraryLoadError,
    ModuleInitError,
    NotInitializedError,
    StateError,
)
from chatbridge.processor import ChatTemplatingProcessor, LifecycleState, active_processor
from chatbridge.types import ChatMessage, FetchTemplateRequest, RenderRequest

HI = RenderRequest(messages=[ChatMessage("user", "hi")])


class TestInitialize:
    """Tests for initialize()."""

    def test_new_processor_not_ready(self, fake_runtime):
        proc = ChatTemplatingProcessor(fake_runtime)
        assert proc.state is LifecycleState.NEW
        assert not proc.ready
        assert fake_runtime.starts == 0

    def test_initialize_starts_runtime(self, fake_runtime):
        proc = ChatTemplatingProcessor(fake_runtime)
        proc.initialize()
        try:
            assert proc.state is LifecycleState.READY
            assert proc.ready
            assert fake_runtime.starts == 1
            assert active_processor() is proc
        finally:
            proc.finalize()

    def test_initialize_twice_raises(self, processor):
        with pytest.raises(StateError) as exc_info:
            processor.initialize()
        assert exc_info.value.code == "STATE_ALREADY_INITIALIZED"
        assert processor.ready

    def test_one_active_processor(self, processor, runtime_factory):
        """A second processor cannot take the runtime until the first finalizes."""
        other_runtime = runtime_factory()
        other = ChatTemplatingProcessor(other_runtime)
        with pytest.raises(StateError) as exc_info:
            other.initialize()
        assert exc_info.value.code == "RUNTIME_ALREADY_ACTIVE"
        assert other.state is LifecycleState.NEW
        assert other_runtime.starts == 0

        processor.finalize()
        other.initialize()
        assert active_processor() is other
        other.finalize()

    def test_start_failure_leaves_processor_new(self, fake_runtime, monkeypatch):
        def broken_start():
            raise OSError("interpreter failed to start")

        monkeypatch.setattr(fake_runtime, "start_interpreter", broken_start)
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(OSError, match="failed to start"):
            proc.initialize()
        assert proc.state is LifecycleState.NEW
        assert active_processor() is None

    def test_default_runtime_load_failure(self, tmp_path):
        """Without a runtime, initialize loads the native library."""
        config.library_path = str(tmp_path / "libmissing.so")
        proc = ChatTemplatingProcessor()
        with pytest.raises(LibraryLoadError):
            proc.initialize()
        assert proc.state is LifecycleState.NEW
        assert active_processor() is None


class TestModuleInitFailure:
    """Module init failure leaves the interpreter running until finalize()."""

    def test_nonzero_status(self, fake_runtime, collaborator):
        collaborator.init_status = 3
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(ModuleInitError) as exc_info:
            proc.initialize()

        err = exc_info.value
        assert err.code == "MODULE_INIT_FAILED"
        assert err.original_code == 3
        assert err.details["interpreter_running"] is True
        assert proc.state is LifecycleState.FAILED
        assert fake_runtime.starts == 1
        assert fake_runtime.stops == 0

        proc.finalize()
        assert proc.state is LifecycleState.FINALIZED
        assert fake_runtime.stops == 1
        assert active_processor() is None

    def test_collaborator_raises(self, fake_runtime, collaborator):
        """An exception inside module init is reported as status 1."""
        collaborator.init_raises = True
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(ModuleInitError) as exc_info:
            proc.initialize()
        assert exc_info.value.original_code == 1
        proc.finalize()

    def test_runtime_raises(self, fake_runtime, monkeypatch):
        def broken_init():
            raise RuntimeError("abort")

        monkeypatch.setattr(fake_runtime, "init_module", broken_init)
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(ModuleInitError) as exc_info:
            proc.initialize()
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.original_code is None
        proc.finalize()

    def test_calls_refused_after_failure(self, fake_runtime, collaborator):
        collaborator.init_status = 1
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(ModuleInitError):
            proc.initialize()
        with pytest.raises(NotInitializedError):
            proc.render_chat_template(HI)
        assert fake_runtime.boundary_calls == 0
        proc.finalize()

    def test_cannot_reinitialize_after_failure(self, fake_runtime, collaborator):
        collaborator.init_status = 1
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(ModuleInitError):
            proc.initialize()
        with pytest.raises(StateError):
            proc.initialize()
        proc.finalize()

    def test_context_manager_finalizes_on_failure(self, fake_runtime, collaborator):
        collaborator.init_status = 1
        with pytest.raises(ModuleInitError):
            with ChatTemplatingProcessor(fake_runtime):
                pass
        assert fake_runtime.stops == 1
        assert active_processor() is None


class TestFinalize:
    """Tests for finalize()."""

    def test_finalize_before_initialize_is_noop(self, fake_runtime):
        proc = ChatTemplatingProcessor(fake_runtime)
        proc.finalize()
        assert proc.state is LifecycleState.NEW
        assert fake_runtime.stops == 0

    def test_teardown_order(self, fake_runtime, monkeypatch):
        """Module cleanup runs before the interpreter stops."""
        events = []
        monkeypatch.setattr(fake_runtime, "cleanup_module", lambda: events.append("cleanup"))
        monkeypatch.setattr(fake_runtime, "stop_interpreter", lambda: events.append("stop"))
        proc = ChatTemplatingProcessor(fake_runtime)
        proc.initialize()
        proc.finalize()
        assert events == ["cleanup", "stop"]

    def test_finalize_twice(self, processor, fake_runtime, collaborator):
        processor.finalize()
        processor.finalize()
        assert collaborator.cleanups == 1
        assert fake_runtime.stops == 1
        assert processor.state is LifecycleState.FINALIZED

    def test_teardown_failures_logged_not_raised(self, fake_runtime, collaborator, caplog):
        collaborator.cleanup_raises = True
        fake_runtime.stop_raises = True
        proc = ChatTemplatingProcessor(fake_runtime)
        proc.initialize()
        with caplog.at_level(logging.ERROR, logger="chatbridge"):
            proc.finalize()

        assert proc.state is LifecycleState.FINALIZED
        assert fake_runtime.stops == 1
        steps = [r.step for r in caplog.records if r.getMessage() == "Teardown step failed"]
        assert steps == ["cleanup_module", "stop_interpreter"]
        assert active_processor() is None

    def test_cannot_reinitialize_after_finalize(self, processor):
        processor.finalize()
        with pytest.raises(StateError):
            processor.initialize()

    def test_context_manager(self, fake_runtime):
        with ChatTemplatingProcessor(fake_runtime) as proc:
            assert proc.ready
        assert proc.state is LifecycleState.FINALIZED
        assert fake_runtime.stops == 1


class TestReadinessGuard:
    """Boundary calls outside READY raise NotInitializedError with zero boundary calls."""

    @pytest.mark.parametrize(
        ("method", "args"),
        [
            ("render_chat_template", (HI,)),
            ("fetch_chat_template", (FetchTemplateRequest(model="m"),)),
            ("clear_caches", ()),
        ],
    )
    def test_before_initialize(self, fake_runtime, method, args):
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(NotInitializedError) as exc_info:
            getattr(proc, method)(*args)
        assert exc_info.value.details["state"] == "new"
        assert fake_runtime.boundary_calls == 0
        assert proc.allocator.allocated == 0

    @pytest.mark.parametrize(
        ("method", "args"),
        [
            ("render_chat_template", (HI,)),
            ("fetch_chat_template", (FetchTemplateRequest(model="m"),)),
            ("clear_caches", ()),
        ],
    )
    def test_after_finalize(self, processor, fake_runtime, method, args):
        processor.finalize()
        with pytest.raises(NotInitializedError) as exc_info:
            getattr(processor, method)(*args)
        assert exc_info.value.details["state"] == "finalized"
        assert fake_runtime.boundary_calls == 0

    def test_guard_before_validation(self, fake_runtime):
        """An invalid request to an uninitialized processor reports the lifecycle error."""
        proc = ChatTemplatingProcessor(fake_runtime)
        with pytest.raises(NotInitializedError):
            proc.render_chat_template(None)  # type: ignore[arg-type]

    def test_repr(self, fake_runtime):
        proc = ChatTemplatingProcessor(fake_runtime)
        assert "state=new" in repr(proc)
