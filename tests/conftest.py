import socket
import httpx
import pytest
import config, persistence, web


@pytest.fixture
async def store():
    s = persistence.InMemoryCounterStore()
    await s.ensure(config.COUNTER_NAMES)
    return s


@pytest.fixture
def no_dns(monkeypatch):
    """Any reverse lookup is a test failure"""
    def boom(ip):
        raise AssertionError(f"unexpected reverse DNS lookup for {ip}")
    monkeypatch.setattr(socket, "gethostbyaddr", boom)


@pytest.fixture
def app(store):
    return web.create_app(store, init_store=False)


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        yield c


@pytest.fixture
async def tls_client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://testserver") as c:
        yield c
