"""HTTP server: single checks, bulk jobs and version endpoints."""

from __future__ import annotations

import asyncio
import inspect
import ipaddress
import json
import logging
import os
import re
from typing import Any, Mapping, Optional

from aiohttp import web

from .bulk import (
    BulkError,
    Checker,
    CreateBulkRequest,
    TaskInput,
    bulk_concurrency,
    require_db,
    run_task,
)
from .config import CheckEmailInput
from .sentry import PACKAGE_VERSION, ErrorKind, ReportedError, log_unknown_errors
from .store import BulkStore, ResultFormat

logger = logging.getLogger(__name__)

REACHER_SECRET_HEADER = "x-reacher-secret"
MAX_BODY_SIZE = 1024 * 16
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_DATABASE_MAX_CONNECTIONS = 5

BULK_TASKS = web.AppKey("bulk_tasks", set)

_U32_MAX = 2**32 - 1


class ReacherResponseError(Exception):
    """An error answered with a status code and a JSON message."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message}


def _jsonable(output: Any) -> dict:
    if hasattr(output, "to_dict"):
        return output.to_dict()
    if isinstance(output, Mapping):
        return dict(output)
    raise TypeError(f"cannot serialize verification output of type {type(output).__name__}")


def _dumps(data: Any) -> bytes:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _json_response(data: Any, status: int = 200) -> web.Response:
    return web.Response(status=status, body=_dumps(data), content_type="application/json")


def _section_error(kind: ErrorKind, section: Any) -> Optional[ReportedError]:
    if not isinstance(section, Mapping) or "error" not in section:
        return None
    error = section["error"]
    description = error.get("description") if isinstance(error, Mapping) else None
    return ReportedError(
        kind=kind,
        value=json.dumps(error),
        description=description if isinstance(description, str) else None,
    )


def _report_unknown_errors(output: Mapping[str, Any], environ: Optional[Mapping[str, str]]) -> None:
    syntax = output.get("syntax")
    syntax = syntax if isinstance(syntax, Mapping) else {}
    username = syntax.get("username") if isinstance(syntax.get("username"), str) else ""
    domain = syntax.get("domain") if isinstance(syntax.get("domain"), str) else ""
    log_unknown_errors(
        _section_error(ErrorKind.MISC, output.get("misc")),
        _section_error(ErrorKind.MX, output.get("mx")),
        _section_error(ErrorKind.SMTP, output.get("smtp")),
        username,
        domain,
        json.dumps(output, indent=2),
        None,
        environ,
    )


async def check_email(
    input: CheckEmailInput,
    checker: Checker,
    environ: Optional[Mapping[str, str]] = None,
) -> Any:
    """Verify one address with the server's sender settings, reporting unknown errors."""
    prepared = input.with_env_overrides(environ)
    output = checker(prepared)
    if inspect.isawaitable(output):
        output = await output
    _report_unknown_errors(_jsonable(output), environ)
    return output


def _check_secret(request: web.Request, secret: Optional[str]) -> None:
    if secret is None:
        return
    value = request.headers.get(REACHER_SECRET_HEADER)
    if value is None:
        raise web.HTTPBadRequest(text=f'Missing request header "{REACHER_SECRET_HEADER}"')
    if value != secret:
        raise web.HTTPBadRequest(text=f'Invalid request header "{REACHER_SECRET_HEADER}"')


async def _json_body(request: web.Request) -> Any:
    length = request.content_length
    if length is None:
        raise web.HTTPLengthRequired()
    if length > MAX_BODY_SIZE:
        raise web.HTTPRequestEntityTooLarge(max_size=MAX_BODY_SIZE, actual_size=length)
    raw = await request.read()
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Request body deserialize error: {exc}") from None


def _query_u64(request: web.Request, name: str) -> Optional[int]:
    text = request.query.get(name)
    if text is None:
        return None
    if not re.fullmatch(r"\d+", text) or int(text) >= 2**64:
        raise web.HTTPBadRequest(text="Invalid query string")
    return int(text)


@web.middleware
async def _error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except ReacherResponseError as exc:
        return _json_response(exc.to_dict(), exc.code)
    except BulkError as exc:
        return web.Response(status=exc.status_code, text=str(exc))


class _Routes:
    def __init__(self, app: web.Application, checker: Checker, store: Optional[BulkStore], secret: Optional[str]) -> None:
        self.app = app
        self.checker = checker
        self.store = store
        self.secret = secret
        self.semaphore = asyncio.Semaphore(bulk_concurrency()[1]) if store is not None else None

    async def _check(self, check_input: CheckEmailInput) -> Any:
        return await check_email(check_input, self.checker)

    async def version(self, request: web.Request) -> web.Response:
        return _json_response({"version": PACKAGE_VERSION})

    async def post_check_email(self, request: web.Request) -> web.Response:
        _check_secret(request, self.secret)
        data = await _json_body(request)
        try:
            check_input = CheckEmailInput.from_dict(data)
        except ValueError as exc:
            raise web.HTTPBadRequest(text=f"Request body deserialize error: {exc}") from None
        if not check_input.to_email:
            raise ReacherResponseError(400, "to_email field is required.")
        output = await self._check(check_input)
        return _json_response(_jsonable(output))

    async def _run_bulk_task(self, store: BulkStore, job_id: int, task: TaskInput) -> None:
        try:
            assert self.semaphore is not None
            async with self.semaphore:
                output = await run_task(task, self._check)
            if output is not None:
                store.add_result(job_id, _jsonable(output))
                logger.debug("Wrote result for [email=%s] for [job=%s]", task.to_email, job_id)
        except Exception:
            logger.exception("Failed to verify [email=%s] for [job=%s]", task.to_email, job_id)

    async def create_bulk_job(self, request: web.Request) -> web.Response:
        _check_secret(request, self.secret)
        store = require_db(self.store)
        data = await _json_body(request)
        try:
            body = CreateBulkRequest.from_dict(data)
        except ValueError as exc:
            raise web.HTTPBadRequest(text=f"Request body deserialize error: {exc}") from None
        tasks = list(body.tasks())
        job_id = store.create_job(len(body.input))
        running = self.app[BULK_TASKS]
        for task in tasks:
            future = asyncio.create_task(self._run_bulk_task(store, job_id, task))
            running.add(future)
            future.add_done_callback(running.discard)
            logger.debug("Submitted task for [job=%s] [email=%s]", job_id, task.to_email)
        return _json_response({"job_id": job_id})

    async def job_status(self, request: web.Request) -> web.Response:
        store = require_db(self.store)
        job_id = int(request.match_info["job_id"])
        return _json_response(store.job_status(job_id).to_dict())

    async def job_results(self, request: web.Request) -> web.Response:
        store = require_db(self.store)
        job_id = int(request.match_info["job_id"])
        format_text = request.query.get("format")
        try:
            result_format = ResultFormat(format_text) if format_text is not None else ResultFormat.JSON
        except ValueError:
            raise web.HTTPBadRequest(text="Invalid query string") from None
        limit = _query_u64(request, "limit")
        offset = _query_u64(request, "offset") or 0
        if result_format is ResultFormat.CSV:
            return web.Response(body=store.results_csv(job_id, limit, offset), content_type="text/csv")
        return web.Response(body=store.results_json(job_id, limit, offset), content_type="application/json")


def create_app(
    checker: Checker,
    store: Optional[BulkStore] = None,
    secret: Optional[str] = None,
) -> web.Application:
    """Build the application; bulk routes answer 404 when no store is given."""
    app = web.Application(middlewares=[_error_middleware])
    app[BULK_TASKS] = set()
    routes = _Routes(app, checker, store, secret)
    app.router.add_get("/version", routes.version)
    app.router.add_post("/v0/check_email", routes.post_check_email)
    app.router.add_post("/v0/bulk", routes.create_bulk_job)
    app.router.add_get(r"/v0/bulk/{job_id:-?\d+}", routes.job_status)
    app.router.add_get(r"/v0/bulk/{job_id:-?\d+}/results", routes.job_results)
    return app


def _parse_port(text: str) -> int:
    if not re.fullmatch(r"\d+", text) or int(text) > 65535:
        raise ValueError("Environment variable PORT is malformed.")
    return int(text)


def _create_store(env: Mapping[str, str]) -> BulkStore:
    url = env.get("DATABASE_URL")
    if url is None:
        raise RuntimeError("Environment variable DATABASE_URL should be set")
    max_conn = env.get("RCH_DATABASE_MAX_CONNECTIONS")
    if max_conn is not None and (not re.fullmatch(r"\d+", max_conn) or int(max_conn) > _U32_MAX):
        raise ValueError("Environment variable RCH_DATABASE_MAX_CONNECTIONS should parse to u32")
    if url.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
    elif "://" in url:
        raise ValueError(f"Unsupported DATABASE_URL {url!r}")
    else:
        path = url
    return BulkStore(path)


async def run_server(checker: Checker, environ: Optional[Mapping[str, str]] = None) -> None:
    """Serve the HTTP endpoints until cancelled, configured from the environment."""
    env = os.environ if environ is None else environ
    try:
        host = str(ipaddress.ip_address(env.get("RCH_HTTP_HOST", DEFAULT_HOST)))
    except ValueError:
        raise ValueError("Environment variable RCH_HTTP_HOST is malformed.") from None
    port_text = env.get("PORT")
    port = DEFAULT_PORT if port_text is None else _parse_port(port_text)

    store: Optional[BulkStore] = None
    if env.get("RCH_ENABLE_BULK", "0") == "1":
        min_conc, max_fetch = bulk_concurrency(env)
        store = _create_store(env)
        logger.info("Bulk endpoints enabled with concurrency min=%s to max=%s.", min_conc, max_fetch)

    app = create_app(checker, store, env.get("RCH_HEADER_SECRET"))
    runner = web.AppRunner(app)
    await runner.setup()
    try:
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info("Server is listening host=%s port=%s", host, port)
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        if store is not None:
            store.close()