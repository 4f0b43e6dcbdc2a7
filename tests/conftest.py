"""
Global pytest fixtures for chatbridge tests.

This module provides:
- FakeCollaborator: a scripted stand-in for ``chatbridge.collaborator``
- FakeRuntime: an instrumented InProcessRuntime that counts boundary calls
- Processor fixtures that always finalize, so the process-wide runtime slot
  is free for the next test

Collaborator modes
------------------

Each entry point follows ``FakeCollaborator.modes[operation]``:

  "echo"       Reflect the request back (messages become ``<role:content>``
               placeholders, in order)
  "fixed"      Return ``FakeCollaborator.replies[operation]`` verbatim
  "null"       Return None (the failure sentinel)
  "malformed"  Return text that is not JSON
  "raise"      Raise inside the collaborator

Tests needing transformers skip when it is not installed (infrastructure,
not a chatbridge bug).
"""

import json
import threading
from typing import Any

import pytest

from chatbridge import config
from chatbridge.processor import ChatTemplatingProcessor, active_processor
from chatbridge.runtime import InProcessRuntime


# =============================================================================
# Fakes
# =============================================================================


class FakeCollaborator:
    """Scripted collaborator module. Records every request it receives."""

    def __init__(self) -> None:
        self.modes = {"render": "echo", "fetch": "echo", "clear_caches": "echo"}
        self.replies: dict[str, str] = {}
        self.init_status = 0
        self.init_raises = False
        self.cleanup_raises = False
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.cleanups = 0
        self.cleared = 0
        # When set, render blocks until the event is set (concurrency tests)
        self.render_gate: threading.Event | None = None
        self.render_entered = threading.Event()

    def init_module(self) -> int:
        if self.init_raises:
            raise ImportError("template stack unavailable")
        return self.init_status

    def cleanup_module(self) -> None:
        self.cleanups += 1
        if self.cleanup_raises:
            raise RuntimeError("cleanup failed")

    def _scripted(self, operation: str, request: dict[str, Any] | None) -> str | None:
        mode = self.modes[operation]
        if request is not None:
            self.requests.append((operation, request))
        if mode == "null":
            return None
        if mode == "malformed":
            return "{not json"
        if mode == "raise":
            detail = (request or {}).get("token", "boom")
            raise RuntimeError(f"collaborator failure: {detail}")
        if mode == "fixed":
            return self.replies[operation]
        return None

    def render_jinja_template(self, request_json: str) -> str | None:
        request = json.loads(request_json)
        if self.render_gate is not None:
            self.render_entered.set()
            self.render_gate.wait(timeout=10)
        if self.modes["render"] != "echo":
            return self._scripted("render", request)
        self.requests.append(("render", request))
        rendered = "".join(f"<{m['role']}:{m['content']}>" for m in request["messages"])
        indices = [[[0, len(rendered)]]] if request.get("return_assistant_tokens_mask") else []
        return json.dumps({"rendered_chats": [rendered], "generation_indices": indices})

    def get_model_chat_template(self, request_json: str) -> str | None:
        request = json.loads(request_json)
        if self.modes["fetch"] != "echo":
            return self._scripted("fetch", request)
        self.requests.append(("fetch", request))
        return json.dumps(
            {
                "chat_template": request.get("chat_template") or f"template-for:{request['model']}",
                "chat_template_kwargs": {"bos_token": "<s>", "eos_token": "</s>"},
            }
        )

    def clear_caches(self) -> str | None:
        if self.modes["clear_caches"] != "echo":
            return self._scripted("clear_caches", None)
        self.cleared += 1
        return json.dumps({"cleared": 0})


class FakeRuntime(InProcessRuntime):
    """
    InProcessRuntime over a FakeCollaborator, with call counters.

    ``boundary_calls`` counts render/fetch/clear-caches crossings.
    ``results_allocated``/``results_freed`` (inherited) count foreign result
    buffers; ``outstanding`` is the number not yet freed.
    """

    def __init__(self, collaborator: FakeCollaborator):
        super().__init__(collaborator)
        self.collaborator = collaborator
        self.boundary_calls = 0
        self._count_lock = threading.Lock()
        self.starts = 0
        self.stops = 0
        self.stop_raises = False
        self.received: list[bytes | None] = []

    def start_interpreter(self) -> None:
        self.starts += 1

    def stop_interpreter(self) -> None:
        self.stops += 1
        if self.stop_raises:
            raise RuntimeError("stop failed")

    def _count(self, request) -> None:
        with self._count_lock:
            self.boundary_calls += 1
            if request is not None:
                self.received.append(request.value)

    def render_chat_template(self, request):
        self._count(request)
        return super().render_chat_template(request)

    def fetch_chat_template(self, request):
        self._count(request)
        return super().fetch_chat_template(request)

    def clear_caches(self):
        self._count(None)
        return super().clear_caches()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_process_state():
    """Free the process-wide runtime slot and restore config after each test."""
    yield
    leftover = active_processor()
    if leftover is not None:
        leftover.finalize()
    config.reset()


@pytest.fixture
def collaborator() -> FakeCollaborator:
    return FakeCollaborator()


@pytest.fixture
def fake_runtime(collaborator) -> FakeRuntime:
    return FakeRuntime(collaborator)


@pytest.fixture
def processor(fake_runtime):
    """Initialized processor over FakeRuntime; finalized on teardown."""
    proc = ChatTemplatingProcessor(fake_runtime)
    proc.initialize()
    yield proc
    proc.finalize()


@pytest.fixture
def transformers():
    """Skip when the transformers extra is not installed."""
    return pytest.importorskip("transformers")


@pytest.fixture
def runtime_factory():
    """Build extra FakeRuntimes (each over its own FakeCollaborator)."""

    def make() -> FakeRuntime:
        return FakeRuntime(FakeCollaborator())

    return make
