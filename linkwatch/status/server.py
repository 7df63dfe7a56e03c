"""Status server: read-only views of the control plane plus a few authenticated operator actions."""
from __future__ import annotations

import logging
from typing import Any

from aiohttp import web

from ..breakers import CircuitBreakerRegistry
from ..config import StatusConfig
from ..degradation import LEVEL_CAPABILITIES, ServiceLevel, ServiceLevelController
from ..failover import FailoverCoordinator
from ..monitoring import AlertEngine

logger = logging.getLogger("linkwatch.status")


def _check_auth(request: web.Request, config: StatusConfig) -> bool:
    if not config.token:
        return False
    auth = request.headers.get("Authorization", "")
    return auth == f"Bearer {config.token}"


def _unauthorized() -> web.Response:
    return web.json_response({"error": "unauthorized"}, status=401)


# --- Read-only ---

async def handle_status(request: web.Request) -> web.Response:
    controller: ServiceLevelController = request.app["controller"]
    engine: AlertEngine = request.app["engine"]
    breakers: CircuitBreakerRegistry = request.app["breakers"]
    coordinator: FailoverCoordinator | None = request.app["coordinator"]
    level = controller.current_level
    return web.json_response({
        "service_level": controller.status().to_dict(),
        "capabilities": sorted(LEVEL_CAPABILITIES[level]),
        "monitoring": engine.status(),
        "breakers": {name: b.state.value for name, b in breakers.get_all().items()},
        "fallback_active": coordinator.fallback_active if coordinator else False,
    })


async def handle_breakers(request: web.Request) -> web.Response:
    breakers: CircuitBreakerRegistry = request.app["breakers"]
    return web.json_response({name: b.to_dict() for name, b in breakers.get_all().items()})


async def handle_breaker(request: web.Request) -> web.Response:
    breakers: CircuitBreakerRegistry = request.app["breakers"]
    breaker = breakers.get_state(request.match_info["name"])
    if breaker is None:
        return web.json_response({"error": "unknown breaker"}, status=404)
    return web.json_response(breaker.to_dict())


async def handle_rules(request: web.Request) -> web.Response:
    engine: AlertEngine = request.app["engine"]
    return web.json_response([r.to_dict() for r in engine.rules()])


async def handle_fallback(request: web.Request) -> web.Response:
    coordinator: FailoverCoordinator | None = request.app["coordinator"]
    if coordinator is None:
        return web.json_response({"error": "failover not configured"}, status=404)
    return web.json_response(coordinator.status())


async def handle_fallback_snapshot(request: web.Request) -> web.Response:
    coordinator: FailoverCoordinator | None = request.app["coordinator"]
    store = coordinator.store if coordinator else None
    if store is None:
        return web.json_response({"error": "snapshot store not configured"}, status=404)
    latest = await store.read_latest()
    if latest is None:
        return web.json_response({"error": "no snapshot synced yet"}, status=404)
    return web.json_response(latest)


async def handle_audit(request: web.Request) -> web.Response:
    audit = request.app["audit"]
    if audit is None or not hasattr(audit, "recent"):
        return web.json_response({"error": "audit log not queryable"}, status=404)
    try:
        limit = int(request.query.get("limit", "50"))
    except ValueError:
        return web.json_response({"error": "limit must be an integer"}, status=400)
    events = audit.recent(request.query.get("type") or None, limit=max(1, min(limit, 500)))
    return web.json_response(events)


# --- Authenticated actions ---

async def handle_breaker_reset(request: web.Request) -> web.Response:
    if not _check_auth(request, request.app["config"]):
        return _unauthorized()
    breakers: CircuitBreakerRegistry = request.app["breakers"]
    name = request.match_info["name"]
    if not breakers.reset(name):
        return web.json_response({"error": "unknown breaker"}, status=404)
    logger.warning("Breaker %s reset by operator", name)
    return web.json_response({"ok": True, "breaker": breakers.get_state(name).to_dict()})


async def handle_service_level(request: web.Request) -> web.Response:
    if not _check_auth(request, request.app["config"]):
        return _unauthorized()
    try:
        body: dict[str, Any] = await request.json()
        if not isinstance(body, dict):
            raise ValueError("body must be a JSON object")
        level = ServiceLevel(body.get("level"))
    except ValueError:
        return web.json_response(
            {"error": "level must be one of " + ", ".join(l.value for l in ServiceLevel)}, status=400,
        )
    controller: ServiceLevelController = request.app["controller"]
    reason = body.get("reason") or "manual override"
    changed = await controller.force_level(level, reason)
    logger.warning("Service level forced to %s by operator (%s)", level.value, reason)
    return web.json_response({"ok": True, "changed": changed, "status": controller.status().to_dict()})


async def _toggle_rule(request: web.Request, enabled: bool) -> web.Response:
    if not _check_auth(request, request.app["config"]):
        return _unauthorized()
    engine: AlertEngine = request.app["engine"]
    rule_id = request.match_info["rule_id"]
    ok = engine.enable_rule(rule_id) if enabled else engine.disable_rule(rule_id)
    if not ok:
        return web.json_response({"error": "unknown rule"}, status=404)
    return web.json_response({"ok": True, "rule": engine.get_rule(rule_id).to_dict()})


async def handle_rule_enable(request: web.Request) -> web.Response:
    return await _toggle_rule(request, True)


async def handle_rule_disable(request: web.Request) -> web.Response:
    return await _toggle_rule(request, False)


def create_status_app(
    config: StatusConfig,
    *,
    controller: ServiceLevelController,
    engine: AlertEngine,
    breakers: CircuitBreakerRegistry,
    coordinator: FailoverCoordinator | None = None,
    audit: Any = None,
) -> web.Application:
    app = web.Application()
    app["config"] = config
    app["controller"] = controller
    app["engine"] = engine
    app["breakers"] = breakers
    app["coordinator"] = coordinator
    app["audit"] = audit
    app.router.add_get("/status", handle_status)
    app.router.add_get("/breakers", handle_breakers)
    app.router.add_get("/breakers/{name}", handle_breaker)
    app.router.add_post("/breakers/{name}/reset", handle_breaker_reset)
    app.router.add_post("/service-level", handle_service_level)
    app.router.add_get("/alerts/rules", handle_rules)
    app.router.add_post("/alerts/rules/{rule_id}/enable", handle_rule_enable)
    app.router.add_post("/alerts/rules/{rule_id}/disable", handle_rule_disable)
    app.router.add_get("/fallback", handle_fallback)
    app.router.add_get("/fallback/snapshot", handle_fallback_snapshot)
    app.router.add_get("/audit", handle_audit)
    return app


async def start_status_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Status server listening on %s:%d", host, port)
    return runner
