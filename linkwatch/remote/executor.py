"""Remote workflow executor: dispatch, poll and read logs of CI workflow runs.

Every public method degrades to None / empty / ``success=False`` and a log
line instead of raising.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

import aiohttp

from ..config import RemoteConfig
from ..errors import RemoteFetchError, RemoteTriggerError
from .models import (
    FlowInfo,
    JobLogs,
    WorkflowJob,
    WorkflowLogs,
    WorkflowRun,
    WorkflowStatus,
    WorkflowTriggerResult,
)

logger = logging.getLogger("linkwatch.remote")

StatusCallback = Callable[[WorkflowStatus], Union[None, Awaitable[None]]]

# Rough expected run times by flow, in seconds.
ESTIMATED_DURATIONS: dict[str, int] = {
    "urgent": 300,
    "health": 180,
    "maintenance": 900,
}
DEFAULT_DURATION_S = 600

# Raised while parsing a response body with an unexpected shape.
_PAYLOAD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def estimate_duration(flow_file: str) -> int:
    for marker, seconds in ESTIMATED_DURATIONS.items():
        if marker in flow_file:
            return seconds
    return DEFAULT_DURATION_S


class RemoteWorkflowExecutor:
    def __init__(self, config: RemoteConfig | None = None) -> None:
        self._config = config or RemoteConfig()

    # --- Configuration ---

    def is_configured(self) -> bool:
        return self._config.is_configured

    def configuration(self) -> dict[str, Any]:
        return {
            "configured": self.is_configured(),
            "owner": self._config.owner,
            "repo": self._config.repo,
            "has_token": bool(self._config.token),
            "base_url": self._config.base_url,
        }

    # --- HTTP helpers ---

    def _url(self, path: str) -> str:
        base = self._config.base_url.rstrip("/")
        return f"{base}/repos/{self._config.owner}/{self._config.repo}{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self._config.user_agent,
        }

    def _timeout(self, seconds: float | None = None) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=seconds or self._config.request_timeout_s)

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        if not self.is_configured():
            raise RemoteFetchError("remote executor not configured")
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(self._url(path), headers=self._headers(), params=params) as resp:
                    if resp.status >= 400:
                        raise RemoteFetchError(f"GET {path} returned HTTP {resp.status}")
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteFetchError(f"GET {path} failed: {exc!r}") from exc
        except ValueError as exc:
            raise RemoteFetchError(f"GET {path} returned a non-JSON body") from exc

    async def _get_text(self, path: str) -> str:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(self._url(path), headers=self._headers()) as resp:
                    if resp.status >= 400:
                        raise RemoteFetchError(f"GET {path} returned HTTP {resp.status}")
                    return await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteFetchError(f"GET {path} failed: {exc!r}") from exc

    async def _dispatch(self, flow_file: str, payload: dict[str, Any], timeout_s: float | None) -> None:
        path = f"/actions/workflows/{flow_file}/dispatches"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout(timeout_s)) as session:
                async with session.post(self._url(path), headers=self._headers(), json=payload) as resp:
                    if resp.status >= 300:
                        body = await resp.text()
                        raise RemoteTriggerError(f"dispatch of {flow_file} returned HTTP {resp.status}: {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteTriggerError(f"dispatch of {flow_file} failed: {exc!r}") from exc

    # --- Public API ---

    async def trigger(
        self,
        flow_file: str,
        inputs: dict[str, Any] | None = None,
        *,
        ref: str | None = None,
        timeout_s: float | None = None,
    ) -> WorkflowTriggerResult:
        """Dispatch ``flow_file`` and resolve the id of the run it started."""
        if not self.is_configured():
            logger.warning("Cannot trigger %s: remote executor not configured", flow_file)
            return WorkflowTriggerResult(success=False, error="remote executor not configured")

        payload = {"ref": ref or self._config.default_ref, "inputs": inputs or {}}
        try:
            await self._dispatch(flow_file, payload, timeout_s)
        except RemoteTriggerError as exc:
            logger.error("Workflow trigger failed: %s", exc)
            return WorkflowTriggerResult(success=False, error=str(exc))

        logger.info("Workflow %s dispatched on %s", flow_file, payload["ref"])
        # The run only shows up in the listing shortly after the dispatch is accepted.
        await asyncio.sleep(self._config.run_lookup_delay_s)
        runs = await self.list_recent_runs(flow_file, limit=1)
        run = runs[0] if runs else None
        if run is None:
            logger.warning("Dispatched %s but could not resolve its run id", flow_file)
        return WorkflowTriggerResult(
            success=True,
            run_id=run.id if run else None,
            workflow_url=run.html_url if run else None,
            estimated_duration_s=estimate_duration(flow_file),
        )

    async def poll_status(self, run_id: int) -> WorkflowStatus | None:
        try:
            data = await self._get_json(f"/actions/runs/{run_id}")
        except RemoteFetchError as exc:
            logger.warning("Status poll for run %s failed: %s", run_id, exc)
            return None
        try:
            return WorkflowStatus.from_api(data)
        except _PAYLOAD_ERRORS as exc:
            logger.warning("Unexpected status payload for run %s: %r", run_id, exc)
            return None

    async def _get_jobs(self, run_id: int) -> list[WorkflowJob]:
        data = await self._get_json(f"/actions/runs/{run_id}/jobs")
        try:
            return [WorkflowJob.from_api(j) for j in data.get("jobs") or []]
        except _PAYLOAD_ERRORS as exc:
            raise RemoteFetchError(f"unexpected job payload for run {run_id}: {exc!r}") from exc

    async def get_run_detail(self, run_id: int) -> WorkflowRun | None:
        try:
            data = await self._get_json(f"/actions/runs/{run_id}")
        except RemoteFetchError as exc:
            logger.warning("Run detail for %s failed: %s", run_id, exc)
            return None
        try:
            jobs = await self._get_jobs(run_id)
        except RemoteFetchError as exc:
            logger.warning("Job listing for run %s failed: %s", run_id, exc)
            jobs = []
        try:
            return WorkflowRun.from_api(data, jobs)
        except _PAYLOAD_ERRORS as exc:
            logger.warning("Unexpected run payload for %s: %r", run_id, exc)
            return None

    async def get_logs(self, run_id: int) -> WorkflowLogs | None:
        try:
            jobs = await self._get_jobs(run_id)
        except RemoteFetchError as exc:
            logger.warning("Job listing for run %s failed: %s", run_id, exc)
            return None
        job_logs: list[JobLogs] = []
        for job in jobs:
            try:
                text = await self._get_text(f"/actions/jobs/{job.id}/logs")
                lines = [line for line in text.splitlines() if line.strip()]
            except RemoteFetchError as exc:
                logger.warning("Logs for job %s failed: %s", job.id, exc)
                lines = [f"Error fetching logs for job {job.name}"]
            job_logs.append(JobLogs(job_id=job.id, name=job.name, lines=lines))
        return WorkflowLogs(run_id=run_id, jobs=job_logs)

    @staticmethod
    def format_logs(logs: WorkflowLogs) -> list[str]:
        out = [f"=== Workflow run {logs.run_id} ==="]
        for job in logs.jobs:
            out.append(f"--- {job.name} ({job.job_id}) ---")
            out.extend(job.lines)
        return out

    async def monitor(
        self,
        run_id: int,
        *,
        max_wait_s: float | None = None,
        interval_s: float | None = None,
        on_change: StatusCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> WorkflowStatus | None:
        """Poll ``run_id`` until it reaches a terminal status.

        ``on_change`` (sync or async) is called whenever the observed status
        differs from the previous observation. Past ``max_wait_s`` the last
        known status is returned; a set ``cancel`` event ends monitoring early.
        Failed polls are skipped.
        """
        max_wait = max_wait_s if max_wait_s is not None else self._config.monitor_max_wait_s
        interval = interval_s if interval_s is not None else self._config.monitor_interval_s
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        last: WorkflowStatus | None = None

        while True:
            status = await self.poll_status(run_id)
            if status is not None:
                if last is None or status.status != last.status:
                    await self._notify_change(on_change, status)
                last = status
                if status.is_terminal:
                    logger.info("Run %s finished: %s/%s", run_id, status.status, status.conclusion)
                    return status
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            if await self._wait(cancel, min(interval, remaining)):
                logger.info("Monitoring of run %s cancelled", run_id)
                return last

        logger.warning("Monitoring of run %s stopped after %.0fs without a final status", run_id, max_wait)
        return last

    @staticmethod
    async def _wait(cancel: asyncio.Event | None, seconds: float) -> bool:
        """Sleep for ``seconds``; True if ``cancel`` was set meanwhile."""
        if cancel is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    async def _notify_change(callback: StatusCallback | None, status: WorkflowStatus) -> None:
        if callback is None:
            return
        try:
            result = callback(status)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Status change callback failed for run %s", status.id)

    async def list_flows(self) -> list[FlowInfo]:
        """Fallback flows defined in the repository."""
        try:
            data = await self._get_json("/actions/workflows")
        except RemoteFetchError as exc:
            logger.warning("Listing workflows failed: %s", exc)
            return []
        try:
            return [
                FlowInfo(id=int(w["id"]), name=w.get("name", ""), path=w.get("path", ""), state=w.get("state", ""))
                for w in data.get("workflows") or []
                if self._config.flow_prefix in w.get("path", "")
            ]
        except _PAYLOAD_ERRORS as exc:
            logger.warning("Unexpected workflow listing: %r", exc)
            return []

    async def list_recent_runs(self, flow_file: str, limit: int = 5) -> list[WorkflowStatus]:
        try:
            data = await self._get_json(f"/actions/workflows/{flow_file}/runs", params={"per_page": limit})
        except RemoteFetchError as exc:
            logger.warning("Listing runs of %s failed: %s", flow_file, exc)
            return []
        try:
            return [WorkflowStatus.from_api(r) for r in (data.get("workflow_runs") or [])[:limit]]
        except _PAYLOAD_ERRORS as exc:
            logger.warning("Unexpected run listing for %s: %r", flow_file, exc)
            return []
