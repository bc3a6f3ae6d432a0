"""aiohttp application exposing the messages API.

Routes:

- ``GET /api/health``
- ``POST /api/messages/send``               immediate send
- ``POST /api/messages/schedule``           one-time or recurring job
- ``GET /api/messages/scheduled``           list live jobs
- ``DELETE /api/messages/scheduled/{id}``   cancel a job
"""

from __future__ import annotations

import logging
import platform
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from aiohttp import web
from pydantic import ValidationError

from src.api.schemas import ScheduleMessageRequest, SendMessageRequest
from src.config import settings
from src.notifications.notifier import DeliveryError
from src.scheduler.errors import DuplicateIdError, InvalidScheduleError
from src.scheduler.models import make_job_id
from src.whatsapp.client import close_session

if TYPE_CHECKING:
    from src.notifications.notifier import Notifier
    from src.scheduler.engine import SchedulerEngine
    from src.scheduler.models import ScheduledJob

logger = logging.getLogger(__name__)

ENGINE_KEY = web.AppKey("engine", object)
NOTIFIER_KEY = web.AppKey("notifier", object)

_STARTED_AT = time.monotonic()


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _error(message: str, status: int, **extra: Any) -> web.Response:
    body = {"success": False, "error": message, "timestamp": _now_iso(), **extra}
    return web.json_response(body, status=status)


def _validation_message(exc: ValidationError) -> str:
    messages = []
    for err in exc.errors():
        text = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        loc = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{loc}: {text}" if loc and err.get("type") != "value_error" else text)
    return "; ".join(messages)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Render every failure as a JSON error body."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return _error("Route not found", 404, path=request.path)
    except web.HTTPException:
        raise
    except ValidationError as exc:
        return _error(_validation_message(exc), 400)
    except InvalidScheduleError as exc:
        return _error(str(exc), 400)
    except DuplicateIdError as exc:
        return _error(str(exc), 409)
    except DeliveryError as exc:
        return _error(str(exc), 502)
    except Exception as exc:
        logger.exception("Unhandled error: %s %s", request.method, request.path)
        return _error(str(exc) or "Internal server error", 500)


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(
            text='{"success": false, "error": "invalid JSON"}',
            content_type="application/json",
        ) from exc
    if not isinstance(payload, dict):
        raise web.HTTPBadRequest(
            text='{"success": false, "error": "expected a JSON object"}',
            content_type="application/json",
        )
    return payload


def _job_payload(engine: SchedulerEngine, job: ScheduledJob) -> dict[str, Any]:
    data = job.to_dict(engine.timezone)
    next_run = engine.next_run_time(job.id)
    data["next_run_at"] = next_run.astimezone(engine.timezone).isoformat() if next_run else None
    return data


# -- Handlers ----------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /api/health — liveness and configuration presence."""
    engine: SchedulerEngine = request.app[ENGINE_KEY]
    return web.json_response(
        {
            "status": "healthy",
            "timestamp": _now_iso(),
            "environment": {
                "python_version": platform.python_version(),
                "platform": platform.system().lower(),
                "uptime": int(time.monotonic() - _STARTED_AT),
                "timezone": settings.scheduler_timezone,
            },
            "scheduler": {
                "running": engine.running,
                "jobs": len(engine.get_all_jobs()),
            },
            "config": {
                "has_phone_number_id": bool(settings.whatsapp_phone_number_id),
                "has_token": bool(settings.whatsapp_token),
                "has_default_recipient": bool(settings.default_recipient),
                "graph_version": settings.graph_version,
            },
        }
    )


async def _send_message(request: web.Request) -> web.Response:
    """POST /api/messages/send — send right away."""
    body = SendMessageRequest.model_validate(await _read_json(request))
    recipient = body.to or settings.default_recipient
    if not recipient:
        return _error("No recipient specified and no default recipient configured", 400)

    notifier: Notifier = request.app[NOTIFIER_KEY]
    if body.message:
        result = await notifier.send_text(recipient, body.message)
    else:
        result = await notifier.send_template(recipient)
    return web.json_response(result.to_dict())


async def _schedule_message(request: web.Request) -> web.Response:
    """POST /api/messages/schedule — create a one-time or recurring job."""
    body = ScheduleMessageRequest.model_validate(await _read_json(request))
    engine: SchedulerEngine = request.app[ENGINE_KEY]

    job_id = make_job_id()
    if body.scheduled_time is not None:
        job = await engine.schedule_one_time(job_id, body.scheduled_time, body.to, body.message)
    else:
        job = await engine.schedule_recurring(job_id, body.cron_expression, body.to, body.message)

    return web.json_response(
        {
            "success": True,
            "job": _job_payload(engine, job),
            "message": "Message scheduled successfully",
        }
    )


async def _list_scheduled(request: web.Request) -> web.Response:
    """GET /api/messages/scheduled"""
    engine: SchedulerEngine = request.app[ENGINE_KEY]
    jobs = [_job_payload(engine, job) for job in engine.get_all_jobs()]
    return web.json_response({"success": True, "count": len(jobs), "jobs": jobs})


async def _cancel_scheduled(request: web.Request) -> web.Response:
    """DELETE /api/messages/scheduled/{id}"""
    engine: SchedulerEngine = request.app[ENGINE_KEY]
    if not await engine.cancel_job(request.match_info["id"]):
        return _error("Scheduled message not found", 404)
    return web.json_response({"success": True, "message": "Scheduled message cancelled"})


# -- Lifecycle ---------------------------------------------------------------


async def _on_startup(app: web.Application) -> None:
    await app[ENGINE_KEY].initialize()


async def _on_cleanup(app: web.Application) -> None:
    await app[ENGINE_KEY].shutdown()
    await close_session()


def create_app(engine: SchedulerEngine, notifier: Notifier) -> web.Application:
    """Build the aiohttp Application. Startup restores jobs, cleanup stops the scheduler."""
    app = web.Application(middlewares=[error_middleware])
    app[ENGINE_KEY] = engine
    app[NOTIFIER_KEY] = notifier

    app.router.add_get("/api/health", _health)
    app.router.add_post("/api/messages/send", _send_message)
    app.router.add_post("/api/messages/schedule", _schedule_message)
    app.router.add_get("/api/messages/scheduled", _list_scheduled)
    app.router.add_delete("/api/messages/scheduled/{id}", _cancel_scheduled)

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app
