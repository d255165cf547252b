"""End-to-end tests for Pipeline: steps, error handling, retries, tasks.

Every test gets its own AsyncTaskScheduler and drains it before
asserting on async-task side effects.
"""

from __future__ import annotations

import json
import logging

import pytest

from feature_pipelines.errors import BusinessError, NoResponseError, PipelineConfigError
from feature_pipelines.http import Request, Response
from feature_pipelines.models import ExecutionOutcome
from feature_pipelines.pipeline import Pipeline
from feature_pipelines.retry import retry
from feature_pipelines.settings import Settings


# ── Helpers ───────────────────────────────────────────────────────


def respond(ctx, request, response):
    response.json({"ok": True})


def make_pipeline(steps, tasks=(), *, scheduler, settings, **kwargs) -> Pipeline:
    return Pipeline.from_registry(
        steps, tasks, scheduler=scheduler, settings=settings, **kwargs
    )


async def invoke(pipeline: Pipeline, request: Request | None = None):
    response = Response()
    run = await pipeline.run(request or Request(method="POST", path="/orders"), response)
    return run, response


def task_recorder(calls: list[str], name: str, *, fail: bool = False):
    async def handle(ctx):
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} failed")

    return handle


# ── Success paths ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_completed_run_schedules_tasks_in_order(scheduler, settings):
    calls: list[str] = []
    pipeline = make_pipeline(
        [("100-respond", respond)],
        [("200-index", task_recorder(calls, "index")), ("100-email", task_recorder(calls, "email"))],
        scheduler=scheduler,
        settings=settings,
    )

    run, response = await invoke(pipeline)
    await scheduler.drain()

    assert run.succeeded
    assert run.outcome is ExecutionOutcome.COMPLETED
    assert response.json_body() == {"ok": True}
    assert calls == ["email", "index"]
    assert run.batch is not None and run.batch.done


@pytest.mark.asyncio
async def test_call_returns_none(scheduler, settings):
    pipeline = make_pipeline([("100-respond", respond)], scheduler=scheduler, settings=settings)
    response = Response()
    assert await pipeline(Request(), response) is None
    assert response.finalized


@pytest.mark.asyncio
async def test_early_response_still_runs_tasks(scheduler, settings):
    calls: list[str] = []
    ran: list[str] = []

    def cached(ctx, request, response):
        ran.append("cached")
        ctx.hit = True
        response.json({"cached": True})

    def compute(ctx, request, response):
        ran.append("compute")

    pipeline = make_pipeline(
        [("100-cached", cached), ("200-compute", compute), ("300-respond", respond)],
        [("100-warm", task_recorder(calls, "warm"))],
        scheduler=scheduler,
        settings=settings,
    )

    run, _ = await invoke(pipeline)
    await scheduler.drain()

    assert ran == ["cached"]
    assert run.outcome is ExecutionOutcome.EARLY_RESPONSE
    assert calls == ["warm"]


@pytest.mark.asyncio
async def test_error_status_early_response_counts_as_success(scheduler, settings):
    calls: list[str] = []

    def reject(ctx, request, response):
        response.status(400).json({"error": "bad input"})

    pipeline = make_pipeline(
        [("100-reject", reject), ("200-respond", respond)],
        [("100-audit", task_recorder(calls, "audit"))],
        scheduler=scheduler,
        settings=settings,
    )

    run, response = await invoke(pipeline)
    await scheduler.drain()

    assert run.succeeded
    assert response.status_code == 400
    assert calls == ["audit"]


@pytest.mark.asyncio
async def test_failing_task_does_not_stop_next(scheduler, settings):
    calls: list[str] = []
    pipeline = make_pipeline(
        [("100-respond", respond)],
        [
            ("100-email", task_recorder(calls, "email", fail=True)),
            ("200-index", task_recorder(calls, "index")),
        ],
        scheduler=scheduler,
        settings=settings,
    )

    run, response = await invoke(pipeline)
    await scheduler.drain()

    assert calls == ["email", "index"]
    assert response.status_code == 200
    assert [f.name for f in run.batch.failures] == ["email"]


# ── Failure paths ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_throwing_step_skips_rest_and_tasks(scheduler, settings):
    calls: list[str] = []
    ran: list[str] = []

    def reserve(ctx, request, response):
        ran.append("reserve")
        raise BusinessError("Out of stock", code="OUT_OF_STOCK")

    def charge(ctx, request, response):
        ran.append("charge")

    pipeline = make_pipeline(
        [("100-reserve", reserve), ("200-charge", charge), ("300-respond", respond)],
        [("100-email", task_recorder(calls, "email"))],
        scheduler=scheduler,
        settings=settings,
    )

    run, response = await invoke(pipeline)
    await scheduler.drain()

    assert ran == ["reserve"]
    assert calls == []
    assert not run.succeeded
    assert run.batch is None
    assert response.status_code == 400
    body = response.json_body()["error"]
    assert body["code"] == "OUT_OF_STOCK"
    assert body["step"] == {"order": 100, "name": "reserve"}


@pytest.mark.asyncio
async def test_custom_handler_responds(scheduler, settings):
    def boom(ctx, request, response):
        raise BusinessError("Out of stock", code="OUT_OF_STOCK")

    def on_error(error, ctx, request, response):
        response.status(409).json({"code": error.code, "step": error.step.name})

    pipeline = make_pipeline(
        [("100-boom", boom)], scheduler=scheduler, settings=settings, on_error=on_error
    )

    run, response = await invoke(pipeline)

    assert response.status_code == 409
    assert response.json_body() == {"code": "OUT_OF_STOCK", "step": "boom"}
    assert not run.succeeded


@pytest.mark.asyncio
async def test_custom_handler_reraise_preserves_fields(scheduler, settings):
    def boom(ctx, request, response):
        raise BusinessError("Out of stock", code="OUT_OF_STOCK")

    def on_error(error, ctx, request, response):
        raise error

    pipeline = make_pipeline(
        [("100-boom", boom)], scheduler=scheduler, settings=settings, on_error=on_error
    )

    _, response = await invoke(pipeline)

    body = response.json_body()["error"]
    assert response.status_code == 400
    assert body["message"] == "Out of stock"
    assert body["code"] == "OUT_OF_STOCK"


@pytest.mark.asyncio
async def test_no_response_escalates_to_500(scheduler, settings):
    calls: list[str] = []
    pipeline = make_pipeline(
        [("100-quiet", lambda ctx, req, res: None)],
        [("100-email", task_recorder(calls, "email"))],
        scheduler=scheduler,
        settings=settings,
    )

    run, response = await invoke(pipeline)
    await scheduler.drain()

    assert isinstance(run.error, NoResponseError)
    assert response.status_code == 500
    assert response.json_body()["error"]["message"] == NoResponseError.MESSAGE
    assert calls == []


@pytest.mark.asyncio
async def test_no_response_is_never_retried(scheduler, settings):
    handled: list[str] = []

    def on_error(error, ctx, request, response):
        handled.append(type(error).__name__)
        return retry()

    pipeline = make_pipeline(
        [("100-quiet", lambda ctx, req, res: None)],
        scheduler=scheduler,
        settings=settings,
        on_error=on_error,
    )

    run, response = await invoke(pipeline)

    assert handled == ["NoResponseError"]
    assert run.attempts == 0
    assert response.status_code == 500


# ── Retries ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_retry_reruns_from_first_step_with_same_context(scheduler, settings):
    calls: list[str] = []
    ran: list[str] = []

    def a(ctx, request, response):
        ran.append("a")
        ctx.x = 1

    def b(ctx, request, response):
        ran.append("b")
        if not ctx.get("retried"):
            raise RuntimeError("flaky")
        response.json({"x": ctx.x})

    def on_error(error, ctx, request, response):
        ctx.retried = True
        return retry()

    pipeline = make_pipeline(
        [("100-a", a), ("200-b", b)],
        [("100-notify", task_recorder(calls, "notify"))],
        scheduler=scheduler,
        settings=settings,
        on_error=on_error,
    )

    run, response = await invoke(pipeline)
    await scheduler.drain()

    assert ran == ["a", "b", "a", "b"]
    assert run.succeeded
    assert run.attempts == 1
    assert run.context.x == 1
    assert run.context.retried is True
    assert response.json_body() == {"x": 1}
    assert calls == ["notify"]


@pytest.mark.asyncio
async def test_max_attempts_two_gives_exactly_two_restarts(scheduler, settings):
    runs: list[int] = []
    handled: list[int] = []

    def always_fails(ctx, request, response):
        runs.append(1)
        raise RuntimeError("still down")

    def on_error(error, ctx, request, response):
        handled.append(1)
        return retry(max_attempts=2)

    pipeline = make_pipeline(
        [("100-call", always_fails)],
        scheduler=scheduler,
        settings=settings,
        on_error=on_error,
    )

    run, response = await invoke(pipeline)

    assert len(runs) == 3
    assert len(handled) == 3
    assert run.attempts == 2
    assert response.status_code == 500
    assert response.json_body()["error"]["message"] == "still down"


@pytest.mark.asyncio
async def test_global_retry_cap(scheduler):
    runs: list[int] = []

    def always_fails(ctx, request, response):
        runs.append(1)
        raise RuntimeError("down")

    pipeline = make_pipeline(
        [("100-call", always_fails)],
        scheduler=scheduler,
        settings=Settings(env="test", max_total_retries=3),
        on_error=lambda *a: retry(),
    )

    run, response = await invoke(pipeline)

    assert len(runs) == 4
    assert run.attempts == 3
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_retry_delay(scheduler, settings):
    attempts: list[int] = []

    def flaky(ctx, request, response):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("once")
        respond(ctx, request, response)

    pipeline = make_pipeline(
        [("100-flaky", flaky)],
        scheduler=scheduler,
        settings=settings,
        on_error=lambda *a: retry(delay_ms=10),
    )

    run, _ = await invoke(pipeline)

    assert run.succeeded
    assert run.attempts == 1


# ── Context initializer ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_context_initializer_seeds_context(scheduler, settings):
    def init(ctx, request, response):
        ctx.tenant = request.header("x-tenant")

    def echo(ctx, request, response):
        response.json({"tenant": ctx.tenant})

    pipeline = make_pipeline(
        [("100-echo", echo)], scheduler=scheduler, settings=settings, context_initializer=init
    )

    _, response = await invoke(pipeline, Request(headers={"X-Tenant": "acme"}))

    assert response.json_body() == {"tenant": "acme"}


@pytest.mark.asyncio
async def test_context_initializer_failure_is_not_wrapped(scheduler, settings):
    ran: list[str] = []
    seen = {}

    def init(ctx, request, response):
        raise BusinessError("no tenant", code="NO_TENANT")

    def step(ctx, request, response):
        ran.append("step")

    def on_error(error, ctx, request, response):
        seen["error"] = error
        return retry()

    pipeline = make_pipeline(
        [("100-step", step)],
        scheduler=scheduler,
        settings=settings,
        context_initializer=init,
        on_error=on_error,
    )

    run, response = await invoke(pipeline)

    assert ran == []
    assert isinstance(seen["error"], BusinessError)
    assert run.attempts == 0
    assert response.json_body()["error"]["code"] == "NO_TENANT"
    assert "step" not in response.json_body()["error"]


# ── Registration, info, settings ─────────────────────────────────


def test_from_directories(tmp_path, write_module, scheduler, settings):
    write_module(tmp_path / "steps" / "100-respond.py", """
        def handle(ctx, request, response):
            response.json({"ok": True})
    """)
    write_module(tmp_path / "tasks" / "100-log.py", "def handle(ctx): pass\n")

    pipeline = Pipeline.from_directories(
        tmp_path / "steps", tmp_path / "tasks", scheduler=scheduler, settings=settings
    )

    info = pipeline.info()
    assert [s.name for s in info.steps] == ["respond"]
    assert [t.name for t in info.async_tasks] == ["log"]
    assert not info.has_error_handler


def test_from_directories_duplicate_fails(tmp_path, write_module, settings):
    write_module(tmp_path / "steps" / "100-a.py", "def handle(c, q, s): pass\n")
    write_module(tmp_path / "steps" / "100-b.py", "def handle(c, q, s): pass\n")

    with pytest.raises(PipelineConfigError):
        Pipeline.from_directories(tmp_path / "steps", settings=settings)


@pytest.mark.asyncio
async def test_debug_tracing_emits_trace_events(scheduler, caplog):
    pipeline = make_pipeline(
        [("100-respond", respond)],
        scheduler=scheduler,
        settings=Settings(debug=True, env="development"),
    )

    with caplog.at_level(logging.INFO, logger="feature_pipelines"):
        await invoke(pipeline)

    events = [json.loads(r.getMessage())["event"] for r in caplog.records]
    assert "step_trace" in events
    assert "pipeline_trace" in events


@pytest.mark.asyncio
async def test_disable_logs_silences_events(scheduler, caplog):
    pipeline = make_pipeline(
        [("100-respond", respond)],
        scheduler=scheduler,
        settings=Settings(debug=True, disable_logs=True, env="development"),
    )

    with caplog.at_level(logging.DEBUG, logger="feature_pipelines"):
        await invoke(pipeline)

    assert caplog.records == []


# ── Stack traces ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_production_settings_hide_stack(scheduler):
    def boom(ctx, request, response):
        raise RuntimeError("secret internals")

    pipeline = make_pipeline(
        [("100-boom", boom)], scheduler=scheduler, settings=Settings(env="production")
    )

    _, response = await invoke(pipeline)

    body = response.json_body()["error"]
    assert body["message"] == "secret internals"
    assert "stack" not in body


@pytest.mark.asyncio
async def test_development_settings_show_stack(scheduler):
    def boom(ctx, request, response):
        raise RuntimeError("visible internals")

    pipeline = make_pipeline(
        [("100-boom", boom)], scheduler=scheduler, settings=Settings(env="development")
    )

    _, response = await invoke(pipeline)

    assert "RuntimeError: visible internals" in response.json_body()["error"]["stack"]


# ── Middlewares ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_middlewares_run_in_order_before_initializer(scheduler, settings):
    order: list[str] = []

    def first(request, response):
        order.append("first")

    async def second(request, response):
        order.append("second")

    def init(ctx, request, response):
        order.append("init")

    def step(ctx, request, response):
        order.append("step")
        respond(ctx, request, response)

    pipeline = make_pipeline(
        [("100-step", step)],
        scheduler=scheduler,
        settings=settings,
        middlewares=[first, second],
        context_initializer=init,
    )

    run, _ = await invoke(pipeline)

    assert order == ["first", "second", "init", "step"]
    assert run.outcome is ExecutionOutcome.COMPLETED
    assert pipeline.info().middlewares == ["first", "second"]


@pytest.mark.asyncio
async def test_middleware_response_ends_request(scheduler, settings):
    calls: list[str] = []
    ran: list[str] = []

    def require_token(request, response):
        if request.header("authorization") is None:
            response.status(401).json({"error": "unauthorized"})

    def never(request, response):
        ran.append("never")

    def step(ctx, request, response):
        ran.append("step")
        respond(ctx, request, response)

    pipeline = make_pipeline(
        [("100-step", step)],
        [("100-audit", task_recorder(calls, "audit"))],
        scheduler=scheduler,
        settings=settings,
        middlewares=[require_token, never],
    )

    run, response = await invoke(pipeline)
    await scheduler.drain()

    assert response.status_code == 401
    assert run.outcome is ExecutionOutcome.MIDDLEWARE_RESPONSE
    assert ran == []
    assert calls == []
    assert run.batch is None


@pytest.mark.asyncio
async def test_middleware_failure_goes_to_fallback_not_on_error(scheduler, settings):
    handled: list[str] = []
    ran: list[str] = []

    def broken(request, response):
        raise BusinessError("Blocked", code="BLOCKED")

    def on_error(error, ctx, request, response):
        handled.append("on_error")

    def step(ctx, request, response):
        ran.append("step")

    pipeline = make_pipeline(
        [("100-step", step)],
        scheduler=scheduler,
        settings=settings,
        middlewares=[broken],
        on_error=on_error,
    )

    run, response = await invoke(pipeline)

    assert handled == []
    assert ran == []
    assert not run.succeeded
    assert response.status_code == 400
    assert response.json_body()["error"]["code"] == "BLOCKED"
