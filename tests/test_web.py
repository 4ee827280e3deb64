import re
import socket
import httpx
from starlette.testclient import TestClient
import config, persistence, web

REDIRECT_RE = re.compile(r"http://(" + "|".join(config.SUBDOMAIN_WORDS) + r")\.nossl\.sh/check")
BROWSER = {"user-agent": "Mozilla/5.0"}


async def increments(app):
    await app.state.recorder.drain()
    return {k: v for k, v in (await app.state.store.snapshot()).items() if v}


def assert_no_cache(response):
    assert response.headers["cache-control"] == "no-store, no-cache, must-revalidate, max-age=0, private"
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["expires"] == "0"


async def test_https_root_redirects_to_random_insecure_subdomain(client, app, no_dns):
    r = await client.get("/", headers={"x-forwarded-proto": "https", **BROWSER})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/html")
    assert REDIRECT_RE.search(r.text)
    assert "window.location.href" in r.text
    assert_no_cache(r)
    assert await increments(app) == {}


async def test_curl_on_root_gets_plain_ip(client, app):
    r = await client.get("/", headers={"user-agent": "curl/8.4.0", "x-forwarded-for": "1.2.3.4, 5.6.7.8"})
    assert r.text == "1.2.3.4\n"
    assert r.headers["content-type"].startswith("text/plain")
    assert_no_cache(r)
    assert await increments(app) == {"curlCount": 1, "rootCount": 1, "httpCount": 1}


async def test_curl_over_https_on_root_is_not_redirected(client, app):
    r = await client.get("/", headers={"user-agent": "curl/8.4.0", "x-forwarded-proto": "https", "x-real-ip": "9.9.9.9"})
    assert r.text == "9.9.9.9\n"
    assert await increments(app) == {"curlCount": 1, "rootCount": 1, "httpsCount": 1}


async def test_http_root_renders_human_page(client, app, no_dns):
    r = await client.get("/", headers={"cf-ipcountry": "de", **BROWSER})
    assert r.status_code == 200
    assert "Unsecured connection detected." in r.text
    assert "127.0.0.1" in r.text
    assert "Germany (DE)" in r.text
    assert config.UNRESOLVED in r.text
    assert_no_cache(r)
    assert await increments(app) == {"rootCount": 1, "httpCount": 1}


async def test_check_never_redirects(tls_client, app, no_dns):
    r = await tls_client.get("/check", headers=BROWSER)
    assert "Secure connection detected." in r.text
    assert not REDIRECT_RE.search(r.text)
    assert await increments(app) == {"checkCount": 1, "httpsCount": 1}


async def test_request_info_json(client, app, monkeypatch):
    monkeypatch.setattr(socket, "gethostbyaddr", lambda ip: ("dns.google", [], [ip]))
    r = await client.get("/api/request-info", headers={"x-forwarded-for": "8.8.8.8", "x-forwarded-proto": "https",
                                                        "cf-ipcountry": "US", **BROWSER})
    body = r.json()
    assert body["scheme"] == "https" and body["status"] == "secure"
    assert body["clientIp"] == "8.8.8.8"
    assert body["headers"]["user-agent"] == "Mozilla/5.0"
    assert body["countryCode"] == "US" and body["countryName"] == "United States"
    assert body["rDNS"] == "dns.google"
    assert_no_cache(r)
    assert await increments(app) == {"apiCount": 1}


async def test_request_info_without_geo_signal(client, no_dns):
    body = (await client.get("/api/request-info", headers=BROWSER)).json()
    assert body["status"] == "insecure"
    assert body["countryCode"] == "" and body["countryName"] == config.UNKNOWN_COUNTRY
    assert body["rDNS"] == config.UNRESOLVED


async def test_healthz_counts_only_healthz(client, tls_client, app):
    for c, ua in ((client, "curl/8.0"), (tls_client, "Mozilla/5.0")):
        r = await c.get("/healthz", headers={"user-agent": ua})
        assert r.json() == {"status": "ok"}
    assert await increments(app) == {"healthzCount": 2}


async def test_stats_reports_counters(client, app):
    await client.get("/healthz")
    await app.state.recorder.drain()
    body = (await client.get("/api/stats")).json()
    assert body["degraded"] is False
    assert body["counters"]["healthzCount"] == 1
    assert set(body["counters"]) == set(config.COUNTER_NAMES)


async def test_scheme_counters_match_root_and_check_requests(client, tls_client, app, no_dns):
    await client.get("/", headers=BROWSER)
    await client.get("/check", headers=BROWSER)
    await tls_client.get("/check", headers=BROWSER)
    await client.get("/healthz")
    counts = await increments(app)
    assert counts["httpCount"] + counts["httpsCount"] == 3


async def test_unrouted_path_touches_no_counter(client, app):
    r = await client.get("/nope", headers=BROWSER)
    assert r.status_code == 404
    assert await increments(app) == {}


class UnavailableStore(persistence.CounterStore):
    async def ensure(self, names): raise persistence.StoreError("down")
    async def increment_many(self, names): raise persistence.StoreError("down")
    async def snapshot(self, names=config.COUNTER_NAMES): raise persistence.StoreError("down")


async def test_store_outage_degrades_instead_of_failing(no_dns, caplog):
    app = web.create_app(UnavailableStore(), init_store=False)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        page = await c.get("/check", headers=BROWSER)
        stats = await c.get("/api/stats")
        health = await c.get("/healthz")
    await app.state.recorder.drain()
    assert page.status_code == 200 and "Unsecured connection detected." in page.text
    assert stats.status_code == 200 and stats.json() == {"counters": {n: 0 for n in config.COUNTER_NAMES}, "degraded": True}
    assert health.json() == {"status": "ok"}
    assert "Failed to increment" in caplog.text


async def test_unrouted_curl_request_counts_curl(client, app):
    r = await client.get("/robots.txt", headers={"user-agent": "curl/8.4.0"})
    assert r.status_code == 404
    assert await increments(app) == {"curlCount": 1}


async def test_unknown_api_path_counts_api(client, app):
    r = await client.get("/api/nope", headers=BROWSER)
    assert r.status_code == 404
    assert await increments(app) == {"apiCount": 1}


class UnreachableStore(persistence.InMemoryCounterStore):
    async def open(self): raise persistence.StoreError("Redis unavailable at redis://127.0.0.1:1")


def test_app_serves_when_store_is_down_at_startup(caplog):
    app = web.create_app(UnreachableStore())
    with TestClient(app) as c:
        health = c.get("/healthz")
        page = c.get("/check", headers=BROWSER)
        stats = c.get("/api/stats")
    assert health.status_code == 200 and health.json() == {"status": "ok"}
    assert page.status_code == 200
    assert stats.status_code == 200
    assert "Counter store unavailable" in caplog.text


def test_app_serves_when_sqlite_directory_is_unwritable(tmp_path):
    blocker = tmp_path / "data"
    blocker.write_text("not a directory")
    app = web.create_app(persistence.SqliteCounterStore(str(blocker / "counters.db")))
    with TestClient(app) as c:
        assert c.get("/healthz").json() == {"status": "ok"}
        assert c.get("/api/stats").json()["degraded"] is True
