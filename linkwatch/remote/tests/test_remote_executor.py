"""Tests for RemoteWorkflowExecutor against a fake CI API."""
from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from linkwatch.config import RemoteConfig
from linkwatch.remote import RemoteWorkflowExecutor, WorkflowStatus

PREFIX = "/repos/acme/site/actions"


class FakeCI:
    def __init__(self) -> None:
        self.dispatches: list[tuple[str, dict[str, Any], dict[str, str]]] = []
        self.dispatch_status = 204
        self.statuses = ["in_progress", "in_progress", "in_progress", "completed"]
        self.run_list: list[dict[str, Any]] = [{"id": 123, "status": "queued", "html_url": "https://ci.example/runs/123"}]
        self.failing_jobs: set[int] = set()
        self.run_polls = 0

    def next_status(self) -> str:
        self.run_polls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


def _make_app(ci: FakeCI) -> web.Application:
    async def dispatch(request: web.Request) -> web.Response:
        ci.dispatches.append((request.match_info["flow"], await request.json(), dict(request.headers)))
        return web.Response(status=ci.dispatch_status, text="" if ci.dispatch_status < 300 else "bad ref")

    async def flow_runs(request: web.Request) -> web.Response:
        per_page = int(request.query.get("per_page", "30"))
        return web.json_response({"workflow_runs": ci.run_list[:per_page]})

    async def run(request: web.Request) -> web.Response:
        run_id = int(request.match_info["run_id"])
        if run_id == 404:
            return web.json_response({"message": "Not Found"}, status=404)
        if run_id == 500:
            return web.Response(text="<html><body>Gateway busy</body></html>", content_type="text/html")
        if run_id == 501:
            return web.json_response({"message": "weird"})
        status = ci.next_status()
        return web.json_response({
            "id": run_id,
            "name": "Fallback urgent alerts",
            "status": status,
            "conclusion": "success" if status == "completed" else None,
            "html_url": f"https://ci.example/runs/{run_id}",
        })

    async def jobs(request: web.Request) -> web.Response:
        return web.json_response({"jobs": [
            {"id": 1, "name": "check", "status": "completed", "conclusion": "success",
             "steps": [{"name": "Run audit", "status": "completed", "conclusion": "success", "number": 1}]},
            {"id": 2, "name": "notify", "status": "completed", "conclusion": "failure", "steps": []},
        ]})

    async def job_logs(request: web.Request) -> web.Response:
        job_id = int(request.match_info["job_id"])
        if job_id in ci.failing_jobs:
            return web.Response(status=500)
        return web.Response(text=f"line one of {job_id}\n\n   \nline two of {job_id}\n")

    async def workflows(request: web.Request) -> web.Response:
        return web.json_response({"workflows": [
            {"id": 11, "name": "Fallback urgent", "path": ".github/workflows/fallback-urgent-alerts.yml", "state": "active"},
            {"id": 12, "name": "CI", "path": ".github/workflows/ci.yml", "state": "active"},
        ]})

    app = web.Application()
    app.router.add_post(PREFIX + "/workflows/{flow}/dispatches", dispatch)
    app.router.add_get(PREFIX + "/workflows/{flow}/runs", flow_runs)
    app.router.add_get(PREFIX + "/workflows", workflows)
    app.router.add_get(PREFIX + "/runs/{run_id}", run)
    app.router.add_get(PREFIX + "/runs/{run_id}/jobs", jobs)
    app.router.add_get(PREFIX + "/jobs/{job_id}/logs", job_logs)
    return app


@pytest.fixture
def ci():
    return FakeCI()


@pytest_asyncio.fixture
async def executor(ci):
    server = TestServer(_make_app(ci))
    await server.start_server()
    config = RemoteConfig(
        token="ghp_test",
        owner="acme",
        repo="site",
        base_url=str(server.make_url("")).rstrip("/"),
        run_lookup_delay_s=0,
        request_timeout_s=5,
    )
    yield RemoteWorkflowExecutor(config)
    await server.close()


# --- trigger ---

@pytest.mark.asyncio
async def test_trigger_resolves_run_id(executor, ci):
    result = await executor.trigger("fallback-urgent-alerts.yml", {"force_check": "true"})
    assert result.success is True
    assert result.run_id == 123
    assert result.workflow_url == "https://ci.example/runs/123"
    assert result.estimated_duration_s == 300

    flow, body, headers = ci.dispatches[0]
    assert flow == "fallback-urgent-alerts.yml"
    assert body == {"ref": "main", "inputs": {"force_check": "true"}}
    assert headers["Authorization"] == "Bearer ghp_test"
    assert headers["Accept"] == "application/vnd.github.v3+json"


@pytest.mark.asyncio
async def test_trigger_non_2xx_is_unsuccessful(executor, ci):
    ci.dispatch_status = 422
    result = await executor.trigger("fallback-health-monitoring.yml", {}, ref="release")
    assert result.success is False
    assert "422" in result.error
    assert ci.dispatches[0][1]["ref"] == "release"


@pytest.mark.asyncio
async def test_trigger_without_run_listing_still_succeeds(executor, ci):
    ci.run_list = []
    result = await executor.trigger("fallback-emergency-maintenance.yml")
    assert result.success is True
    assert result.run_id is None
    assert result.estimated_duration_s == 900


@pytest.mark.asyncio
async def test_unconfigured_executor_makes_no_calls():
    executor = RemoteWorkflowExecutor(RemoteConfig(token="", owner="acme", repo="site"))
    assert executor.is_configured() is False
    result = await executor.trigger("fallback-urgent-alerts.yml")
    assert result.success is False
    assert await executor.poll_status(1) is None
    assert await executor.list_flows() == []
    assert executor.configuration()["has_token"] is False


@pytest.mark.asyncio
async def test_unreachable_api_degrades():
    executor = RemoteWorkflowExecutor(RemoteConfig(
        token="t", owner="acme", repo="site", base_url="http://127.0.0.1:9", request_timeout_s=1,
    ))
    result = await executor.trigger("fallback-urgent-alerts.yml")
    assert result.success is False
    assert await executor.get_run_detail(5) is None
    assert await executor.list_recent_runs("fallback-urgent-alerts.yml") == []


# --- status / detail / logs ---

@pytest.mark.asyncio
async def test_poll_status(executor):
    status = await executor.poll_status(123)
    assert status.id == 123
    assert status.status == "in_progress"
    assert status.is_terminal is False


@pytest.mark.asyncio
async def test_poll_status_missing_run(executor):
    assert await executor.poll_status(404) is None


@pytest.mark.asyncio
async def test_poll_status_html_body_is_none(executor):
    assert await executor.poll_status(500) is None


@pytest.mark.asyncio
async def test_poll_status_body_without_id_is_none(executor):
    assert await executor.poll_status(501) is None
    assert await executor.get_run_detail(501) is None


@pytest.mark.asyncio
async def test_monitor_survives_unexpected_bodies(executor):
    assert await executor.monitor(501, max_wait_s=0.2, interval_s=0.05) is None
    assert await executor.monitor(500, max_wait_s=0.2, interval_s=0.05) is None


@pytest.mark.asyncio
async def test_trigger_with_malformed_run_listing(executor, ci):
    ci.run_list = [{"status": "queued"}]
    result = await executor.trigger("fallback-urgent-alerts.yml")
    assert result.success is True
    assert result.run_id is None
    assert await executor.list_recent_runs("fallback-urgent-alerts.yml") == []


@pytest.mark.asyncio
async def test_run_detail_includes_jobs_and_steps(executor):
    run = await executor.get_run_detail(123)
    assert run.id == 123
    assert [j.name for j in run.jobs] == ["check", "notify"]
    assert run.jobs[0].steps[0].name == "Run audit"


@pytest.mark.asyncio
async def test_logs_drop_blank_lines_and_placeholder_failed_job(executor, ci):
    ci.failing_jobs.add(2)
    logs = await executor.get_logs(123)
    assert logs.jobs[0].lines == ["line one of 1", "line two of 1"]
    assert logs.jobs[1].lines == ["Error fetching logs for job notify"]

    formatted = executor.format_logs(logs)
    assert formatted[0] == "=== Workflow run 123 ==="
    assert "--- check (1) ---" in formatted
    assert formatted[-1] == "Error fetching logs for job notify"


# --- monitor ---

@pytest.mark.asyncio
async def test_monitor_returns_on_completion_and_reports_changes(executor):
    changes: list[str] = []

    def on_change(status: WorkflowStatus) -> None:
        changes.append(status.status)

    loop = asyncio.get_running_loop()
    started = loop.time()
    status = await executor.monitor(123, max_wait_s=1.0, interval_s=0.1, on_change=on_change)
    assert status.status == "completed"
    assert loop.time() - started < 1.0
    assert changes == ["in_progress", "completed"]


@pytest.mark.asyncio
async def test_monitor_accepts_async_callback(executor):
    seen: list[str] = []

    async def on_change(status: WorkflowStatus) -> None:
        seen.append(status.status)

    await executor.monitor(123, max_wait_s=1.0, interval_s=0.05, on_change=on_change)
    assert seen == ["in_progress", "completed"]


@pytest.mark.asyncio
async def test_monitor_times_out_with_last_status(executor, ci):
    ci.statuses = ["queued"]
    status = await executor.monitor(123, max_wait_s=0.3, interval_s=0.1)
    assert status.status == "queued"
    assert ci.run_polls >= 3


@pytest.mark.asyncio
async def test_monitor_honours_cancel(executor, ci):
    ci.statuses = ["in_progress"]
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.15, cancel.set)
    status = await executor.monitor(123, max_wait_s=10, interval_s=0.1, cancel=cancel)
    assert status.status == "in_progress"
    assert ci.run_polls <= 3


# --- listings ---

@pytest.mark.asyncio
async def test_list_flows_only_fallback(executor):
    flows = await executor.list_flows()
    assert [f.file_name for f in flows] == ["fallback-urgent-alerts.yml"]


@pytest.mark.asyncio
async def test_list_recent_runs_respects_limit(executor, ci):
    ci.run_list = [{"id": i, "status": "completed", "conclusion": "success"} for i in range(10)]
    runs = await executor.list_recent_runs("fallback-urgent-alerts.yml", limit=5)
    assert len(runs) == 5
    assert runs[0].conclusion == "success"
