"""
Tests for the background sync task.

The pipeline, Redis and the engine are patched; the task runs eagerly in
the test process.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.schemas.sync import SyncResult
from app.tasks import sync_tasks
from app.tasks.sync_tasks import SyncTask, get_worker_embedding_provider, run_async, sync_channel
from app.workers.celery_app import celery_app


@pytest.fixture
def patched_runtime():
    """Patch everything _sync touches outside the orchestrator."""
    pipeline = SimpleNamespace(sync=MagicMock(), aclose=AsyncMock())
    pipeline.sync.run_sync = AsyncMock(return_value=SyncResult(
        success=True, channel_id=1, total_blocks=3, processed_blocks=3, duration_ms=1200
    ))

    with patch('app.tasks.sync_tasks.init_redis', AsyncMock(return_value=None)), \
         patch('app.tasks.sync_tasks.close_redis', AsyncMock()) as close_redis, \
         patch('app.tasks.sync_tasks.build_pipeline', AsyncMock(return_value=pipeline)) as build_pipeline, \
         patch('app.tasks.sync_tasks.engine') as engine:
        engine.dispose = AsyncMock()
        yield SimpleNamespace(
            pipeline=pipeline, build_pipeline=build_pipeline, close_redis=close_redis, engine=engine
        )


def test_task_registration():
    assert sync_channel.name == "arena.sync_channel"
    assert "arena.sync_channel" in celery_app.tasks
    assert OperationalError in SyncTask.autoretry_for


def test_sync_channel_returns_result_dict(patched_runtime):
    result = sync_channel("arena-influences", {"user_id": "user_2abc"})

    assert result["success"] is True
    assert result["processed_blocks"] == 3

    slug, identity = patched_runtime.pipeline.sync.run_sync.await_args.args
    assert slug == "arena-influences"
    assert identity.key == "user:user_2abc"


def test_sync_channel_cleans_up_on_failure(patched_runtime):
    patched_runtime.pipeline.sync.run_sync.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        sync_channel("arena-influences", {"session_id": "anon_1_x", "ip_address": "203.0.113.9"})

    patched_runtime.pipeline.aclose.assert_awaited_once()
    patched_runtime.close_redis.assert_awaited_once()
    patched_runtime.engine.dispose.assert_awaited_once()


def test_run_async_without_loop():
    async def answer():
        return 42

    assert run_async(answer()) == 42


@pytest.mark.asyncio
async def test_run_async_inside_running_loop():
    async def answer():
        await asyncio.sleep(0)
        return 7

    assert run_async(answer()) == 7


def test_openai_provider_built_per_task(monkeypatch):
    monkeypatch.setattr(settings, "EMBEDDING_PROVIDER", "openai")

    assert get_worker_embedding_provider() is None


def test_local_model_loaded_once_per_process(monkeypatch):
    monkeypatch.setattr(settings, "EMBEDDING_PROVIDER", "local")
    monkeypatch.setattr(sync_tasks, "_local_provider", None)
    provider = MagicMock()
    provider.initialize = AsyncMock()
    factory = MagicMock(return_value=provider)
    monkeypatch.setattr(sync_tasks, "LocalEmbeddingProvider", factory)

    assert get_worker_embedding_provider() is provider
    assert get_worker_embedding_provider() is provider

    factory.assert_called_once()
    provider.initialize.assert_awaited_once()


def test_task_borrows_worker_model(patched_runtime, monkeypatch):
    provider = MagicMock()
    monkeypatch.setattr(sync_tasks, "get_worker_embedding_provider", lambda: provider)

    sync_channel("arena-influences", {"user_id": "user_2abc"})

    assert patched_runtime.build_pipeline.await_args.kwargs["embedding_provider"] is provider
