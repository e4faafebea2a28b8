"""Shared test fixtures for the Ward Assist Relay test suite.

Provides settings that work without a .env file, an in-memory record store,
a scripted stand-in for the generation backend and a frame recorder.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncGenerator, Iterable, Sequence
from typing import Any
from unittest.mock import patch

import pytest

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def _make_test_settings() -> Any:
    from core.constants import Settings

    return Settings(
        _env_file=None,
        llm_base_url="http://localhost:11434/v1",
        llm_api_key="test-key",
        llm_model="test-model",
        generation_timeout_seconds=5.0,
        first_token_timeout_seconds=1.0,
        generation_max_retries=2,
        max_history_turns=20,
        max_message_length=1000,
        call_lookahead_chars=4096,
        record_store="memory",
        cancel_grace_seconds=1.0,
        enable_content_logging=False,
        http_request_logging=False,
        debug=False,
    )


def pytest_configure(config: pytest.Config) -> None:
    """Patch get_settings before any test modules are imported.

    Module-level ``from core.constants import get_settings`` imports then
    pick up the patched function, so no test depends on a local .env.
    """
    test_settings = _make_test_settings()

    cfg: Any = config
    cfg._test_settings = test_settings

    patcher = patch("core.constants.get_settings", return_value=test_settings)
    patcher.start()
    cfg._settings_patcher = patcher


def pytest_unconfigure(config: pytest.Config) -> None:
    """Clean up settings patch after all tests complete."""
    patcher = getattr(config, "_settings_patcher", None)
    if patcher:
        patcher.stop()


@pytest.fixture
def test_settings(pytestconfig: pytest.Config) -> Any:
    """The Settings instance every get_settings() call returns during tests."""
    cfg: Any = pytestconfig
    return cfg._test_settings


# ============================================================================
# Domain fixtures
# ============================================================================


@pytest.fixture
def memory_store() -> Any:
    from integrations.record_store import InMemoryRequestStore

    return InMemoryRequestStore()


@pytest.fixture
def registry() -> Any:
    from core.session_registry import SessionRegistry

    return SessionRegistry()


class ScriptedGenerationClient:
    """Replays a script in place of GenerationClient.stream_completion.

    Script items: ``str`` becomes a StreamFragment, a ToolCallPayload is
    yielded as is, and an exception instance is raised at that point. With
    ``hang=True`` the stream blocks after the script until cancelled.
    """

    def __init__(self, script: Iterable[Any] = (), *, hang: bool = False, delay: float = 0.0) -> None:
        self.script = list(script)
        self.hang = hang
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self.closed = 0

    async def stream_completion(
        self,
        system_prompt: str,
        history: Sequence[Any],
        user_message: str,
        *,
        session_id: str,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[Any, None]:
        from models.action_models import ToolCallPayload
        from models.session_models import StreamFragment

        self.calls.append(
            {
                "system_prompt": system_prompt,
                "history": tuple(history),
                "user_message": user_message,
                "session_id": session_id,
                "tools": tools,
            }
        )
        seq = 0
        try:
            for item in self.script:
                if self.delay:
                    await asyncio.sleep(self.delay)
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, ToolCallPayload):
                    yield item
                    continue
                yield StreamFragment(session_id=session_id, seq=seq, text=item)
                seq += 1
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed += 1


@pytest.fixture
def scripted_client() -> type[ScriptedGenerationClient]:
    """Factory for scripted generation clients."""
    return ScriptedGenerationClient


class RecordingSender:
    """Async frame sink that records every outbound frame."""

    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []

    async def __call__(self, frame: dict[str, Any]) -> bool:
        self.frames.append(frame)
        return True

    @property
    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]

    def of_type(self, frame_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.frames if frame["type"] == frame_type]

    @property
    def tokens(self) -> list[str]:
        return [frame["content"] for frame in self.of_type("token")]

    async def wait_for(self, frame_type: str, count: int = 1, timeout: float = 1.0) -> None:
        async def _poll() -> None:
            while len(self.of_type(frame_type)) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()
