import logging
import time
from datetime import datetime, timezone
import fasthtml.common as fh
from fasthtml.core import HttpHeader
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse
import analytics, config, fasthtml_components, geo, persistence, redirect

logger = logging.getLogger(config.LOGGER_NAME)

STATUS_TEXT = {True: "Secure connection detected.", False: "Unsecured connection detected."}


def create_app(store: persistence.CounterStore, init_store: bool = True, shutdown_hooks=()):
    """Build the FastHTML app around an injected counter store. With init_store the app opens/ensures it on startup and closes it on shutdown."""
    config.validate()
    recorder = analytics.CounterRecorder(store)

    async def on_startup():
        if not init_store: return
        try:
            await persistence.init_counter_store(store)
        except Exception as e:
            logger.warning(f"[STARTUP] ⚠️  Counter store unavailable, serving without counters: {e}")

    async def on_shutdown():
        await recorder.drain()
        if init_store: await store.close()
        logger.info("[SHUTDOWN] Counter store closed")
        for hook in shutdown_hooks: await hook()

    async def log_latency(request, call_next):
        start = time.time()
        response = await call_next(request)
        if response.status_code == 404:  # unrouted paths still count curl (and /api/*) hits
            recorder.record(analytics.classify_request(request).counters)
        logger.info(f"[Latency] {request.url.path} -> {(time.time() - start) * 1000:.2f} ms")
        return response

    # secret_key only keeps FastHTML from writing a .sesskey file; no route uses sessions
    web_app = fh.FastHTML( on_startup=[on_startup], on_shutdown=[on_shutdown], secret_key=config.SESSION_SECRET,
                           hdrs=[fh.Style(fasthtml_components.PAGE_CSS)], middleware=[Middleware(BaseHTTPMiddleware, dispatch=log_latency)])
    web_app.state.store, web_app.state.recorder = store, recorder

    async def counters_snapshot():
        try:
            return await store.snapshot(config.COUNTER_NAMES), False
        except Exception as e:
            logger.warning(f"[COUNTERS] ⚠️  Snapshot failed, rendering zeros: {e}")
            return {name: 0 for name in config.COUNTER_NAMES}, True

    async def render_index(request, classified):
        if classified.is_curl:
            return PlainTextResponse(f"{classified.client_ip}\n", headers=config.NO_CACHE_HEADERS)
        enrichment = await geo.enrich(classified.client_ip, request.headers)
        counts, _ = await counters_snapshot()
        generated_at = datetime.now(timezone.utc).astimezone(config.LOCAL_TIMEZONE)
        page = fasthtml_components.index_page(classified, enrichment, counts, STATUS_TEXT[classified.is_secure], generated_at)
        return (*page, *[HttpHeader(k, v) for k, v in config.NO_CACHE_HEADERS.items()])

    @web_app.get("/")
    async def index(request):
        classified = analytics.classify_request(request)
        if redirect.should_redirect(classified):
            url = redirect.insecure_redirect_url()
            logger.info(f"[REDIRECT] {classified.client_ip} https -> {url}")
            return HTMLResponse(fasthtml_components.redirect_page(url), headers=config.NO_CACHE_HEADERS)
        recorder.record(classified.counters)
        logger.info(f"📄 GET / | IP: {classified.client_ip} | {classified.scheme} | UA: {classified.user_agent[:50]}")
        return await render_index(request, classified)

    @web_app.get("/check")
    async def check(request):
        classified = analytics.classify_request(request)
        recorder.record(classified.counters)
        logger.info(f"📄 GET /check | IP: {classified.client_ip} | {classified.scheme} | UA: {classified.user_agent[:50]}")
        return await render_index(request, classified)

    @web_app.get("/api/request-info")
    async def request_info(request):
        classified = analytics.classify_request(request)
        recorder.record(classified.counters)
        enrichment = await geo.enrich(classified.client_ip, request.headers)
        return JSONResponse({ "scheme": classified.scheme, "status": classified.status, "clientIp": classified.client_ip,
                              "headers": dict(classified.headers), **enrichment.as_dict()}, headers=config.NO_CACHE_HEADERS)

    @web_app.get("/api/stats")
    async def stats(request):
        recorder.record(analytics.classify_request(request).counters)
        counts, degraded = await counters_snapshot()
        return JSONResponse({"counters": counts, "degraded": degraded}, headers=config.NO_CACHE_HEADERS)

    @web_app.get("/healthz")
    async def healthz(request):
        recorder.record(analytics.classify_request(request).counters)
        return JSONResponse({"status": "ok"}, headers=config.NO_CACHE_HEADERS)

    logger.info("✅ nossl-check app initialized")
    return web_app
