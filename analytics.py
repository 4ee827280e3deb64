import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
import config

logger = logging.getLogger(config.LOGGER_NAME)


def get_scheme(headers: Mapping[str, str], is_secure: bool) -> str:
    """Proxy-signalled scheme wins over the transport flag; the proxy value is trusted as-is"""
    forwarded_proto = headers.get("x-forwarded-proto")
    if forwarded_proto:
        return forwarded_proto.split(",")[0].strip().lower()
    return "https" if is_secure else "http"


def get_real_ip(headers: Mapping[str, str], peer: Optional[str]) -> str:
    return ((headers.get("x-forwarded-for") or "").split(",")[0].strip() or
             headers.get("x-real-ip") or peer or "")


def is_curl_client(user_agent: Optional[str]) -> bool:
    return "curl" in (user_agent or "").lower()


def route_category(path: str) -> str:
    if path == "/": return config.ROUTE_ROOT
    if path == config.REDIRECT_PATH: return config.ROUTE_CHECK
    if path == "/healthz": return config.ROUTE_HEALTHZ
    if path == config.API_PREFIX or path.startswith(config.API_PREFIX + "/"): return config.ROUTE_API
    return config.ROUTE_OTHER


def classify_counters(path: str, scheme: str, is_curl: bool) -> FrozenSet[str]:
    """Map one request onto the counters it increments. Rules are independent, so a request may hit several."""
    route = route_category(path)
    if route == config.ROUTE_HEALTHZ:
        return frozenset({"healthzCount"})  # probes are usually curl, keep them out of curlCount
    names = set()
    if route in (config.ROUTE_ROOT, config.ROUTE_CHECK):
        if scheme == "http": names.add("httpCount")
        elif scheme == "https": names.add("httpsCount")
    if route == config.ROUTE_API: names.add("apiCount")
    if route == config.ROUTE_CHECK: names.add("checkCount")
    if route == config.ROUTE_ROOT: names.add("rootCount")
    if is_curl: names.add("curlCount")
    return frozenset(names)


def normalize_headers(items: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Sorted (name, value) pairs, repeated headers joined with ', '"""
    grouped: Dict[str, List[str]] = {}
    for key, value in items:
        grouped.setdefault(key.lower(), []).append(str(value))
    return sorted((k, ", ".join(v)) for k, v in grouped.items())


@dataclass(frozen=True)
class ClassifiedRequest:
    scheme: str
    client_ip: str
    path: str
    route: str
    is_curl: bool
    user_agent: str = ""
    headers: Tuple[Tuple[str, str], ...] = ()
    counters: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    @property
    def status(self) -> str:
        return "secure" if self.is_secure else "insecure"


def classify_request(request) -> ClassifiedRequest:
    """Classification of a Starlette request. Pure CPU work, never raises on odd headers."""
    headers = request.headers
    scheme = get_scheme(headers, request.url.scheme in ("https", "wss"))
    client_ip = get_real_ip(headers, request.client.host if request.client else None)
    user_agent = headers.get("user-agent", "")
    path = request.url.path
    curl = is_curl_client(user_agent)
    return ClassifiedRequest( scheme=scheme, client_ip=client_ip, path=path, route=route_category(path), is_curl=curl,
                              user_agent=user_agent, headers=tuple(normalize_headers(headers.items())),
                              counters=classify_counters(path, scheme, curl))


class CounterRecorder:
    """Dispatches counter increments as background tasks so a response never waits on (or fails with) the store"""

    def __init__(self, store):
        self.store = store
        self._pending = set()

    def record(self, names: Iterable[str]) -> Optional[asyncio.Task]:
        names = frozenset(names)
        if not names: return None
        task = asyncio.get_running_loop().create_task(self._increment(names))
        self._pending.add(task)  # strong ref until done
        task.add_done_callback(self._pending.discard)
        return task

    async def _increment(self, names: FrozenSet[str]):
        try:
            await self.store.increment_many(names)
            logger.debug(f"[COUNTERS] +1 {sorted(names)}")
        except Exception as e:
            logger.warning(f"[COUNTERS] ⚠️  Failed to increment {sorted(names)}: {e}")

    async def drain(self):
        """Wait for every dispatched increment; used at shutdown and by tests"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)
