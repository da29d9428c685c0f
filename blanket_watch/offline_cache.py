"""
Offline cache worker for the app shell.

Requests for same-origin GETs are answered from a versioned on-disk cache:

- navigations go to the network first and fall back to the cached shell page
- other assets are served cache-first and revalidated in the background
- non-GET and cross-origin requests are not handled (the caller passes them
  straight to the network)

The worker moves through installing -> installed -> active. install()
pre-caches the asset manifest, activate() removes caches left by other
versions.
"""

import hashlib
import json
import os
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import urldefrag, urljoin, urlsplit

import requests

from blanket_watch.log_util import app_logger

logger = app_logger(__name__)

ASSETS = ["./", "./index.html", "./styles.css", "./app.js", "./manifest.webmanifest"]
SHELL_PAGE = "./index.html"
REQUEST_TIMEOUT_S = 20


class CacheInstallError(Exception):
    """Raised when the asset manifest cannot be pre-cached."""


class NetworkError(Exception):
    """Raised by fetchers when the network cannot be reached."""


@dataclass
class Request:
    url: str
    method: str = "GET"
    mode: str = "cors"  # "navigate" for page loads


@dataclass
class CachedResponse:
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def offline_response() -> CachedResponse:
    return CachedResponse(status=503, body=b"Offline", headers={"Content-Type": "text/plain"})


class RequestsFetcher:
    """Network fetch through a requests session."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = REQUEST_TIMEOUT_S):
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self, request: Request) -> CachedResponse:
        try:
            r = self.session.request(request.method, request.url, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e
        return CachedResponse(status=r.status_code, body=r.content, headers=dict(r.headers), url=r.url)


class Cache:
    """One named cache: a directory with a metadata and a body file per URL."""

    def __init__(self, path: str, lock: threading.Lock):
        self.path = path
        self._lock = lock
        os.makedirs(path, exist_ok=True)

    def _entry(self, url: str) -> str:
        return os.path.join(self.path, hashlib.sha1(url.encode("utf-8")).hexdigest())

    def match(self, url: str) -> Optional[CachedResponse]:
        base = self._entry(url)
        with self._lock:
            try:
                with open(base + ".json", "r", encoding="utf-8") as f:
                    meta = json.load(f)
                with open(base + ".body", "rb") as f:
                    body = f.read()
            except FileNotFoundError:
                return None
            except (OSError, ValueError) as e:
                logger.warning("Dropping unreadable cache entry for %s: %s", url, e)
                return None
        status = meta.get("status") if isinstance(meta, dict) else None
        if not isinstance(status, int):
            logger.warning("Dropping cache entry without a status for %s", url)
            return None
        return CachedResponse(status=status, body=body, headers=meta.get("headers") or {}, url=url)

    def put(self, url: str, response: CachedResponse):
        base = self._entry(url)
        meta = {"url": url, "status": response.status, "headers": dict(response.headers)}
        with self._lock:
            with open(base + ".body", "wb") as f:
                f.write(response.body)
            with open(base + ".json", "w", encoding="utf-8") as f:
                json.dump(meta, f)


class CacheStorage:
    """All caches under one root directory, addressed by name."""

    def __init__(self, root: str):
        self.root = root
        self._lock = threading.Lock()
        os.makedirs(root, exist_ok=True)

    def open(self, name: str) -> Cache:
        return Cache(os.path.join(self.root, name), self._lock)

    def keys(self) -> List[str]:
        return sorted(
            d for d in os.listdir(self.root) if os.path.isdir(os.path.join(self.root, d))
        )

    def delete(self, name: str) -> bool:
        path = os.path.join(self.root, name)
        if not os.path.isdir(path):
            return False
        with self._lock:
            shutil.rmtree(path)
        return True


class OfflineCacheWorker:
    """
    Cache-first request handler for the app shell served from origin.

    Args:
        storage (CacheStorage): Where caches live
        origin (str): Scheme and host of the app, e.g. "http://localhost:8000"
        version (int): Cache version; bumping it retires older caches on activate
        prefix (str): Cache name prefix
        fetch (callable): Request -> CachedResponse, raising NetworkError offline
    """

    def __init__(
        self,
        storage: CacheStorage,
        origin: str,
        version: int = 1,
        prefix: str = "roo-static",
        assets: Optional[List[str]] = None,
        fetch: Optional[Callable[[Request], CachedResponse]] = None,
        max_workers: int = 2,
    ):
        self.storage = storage
        self.origin = origin.rstrip("/") + "/"
        self.cache_name = f"{prefix}-v{version}"
        self.assets = list(assets if assets is not None else ASSETS)
        self.fetch = fetch or RequestsFetcher()
        self.state = "parsed"

        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._pending = []
        self._pending_lock = threading.Lock()

    def resolve(self, url: str) -> str:
        return urldefrag(urljoin(self.origin, url))[0]

    def same_origin(self, url: str) -> bool:
        a, b = urlsplit(url), urlsplit(self.origin)
        return (a.scheme, a.netloc) == (b.scheme, b.netloc)

    # ---- Lifecycle ----
    def install(self):
        """
        Pre-cache the asset manifest. All assets must load or nothing is stored.

        Raises:
            CacheInstallError: If any asset fails to load
        """
        self.state = "installing"
        fetched = []
        for asset in self.assets:
            url = self.resolve(asset)
            try:
                res = self.fetch(Request(url=url))
            except NetworkError as e:
                self.state = "redundant"
                raise CacheInstallError(f"Failed to cache {url}: {e}") from e
            if not res.ok:
                self.state = "redundant"
                raise CacheInstallError(f"Failed to cache {url}: HTTP {res.status}")
            fetched.append((url, res))

        cache = self.storage.open(self.cache_name)
        for url, res in fetched:
            cache.put(url, res)
        self.state = "installed"
        logger.info("Installed %s with %d assets", self.cache_name, len(fetched))

    def activate(self) -> List[str]:
        """Delete caches from other versions. Returns the names removed."""
        if self.state not in ("installed", "active"):
            raise RuntimeError(f"Cannot activate a worker in state {self.state!r}")
        removed = [name for name in self.storage.keys() if name != self.cache_name]
        for name in removed:
            self.storage.delete(name)
        self.state = "active"
        if removed:
            logger.info("Removed stale caches: %s", ", ".join(removed))
        return removed

    def resume(self):
        """
        Take over an already installed cache (a later run of the same version).

        Raises:
            CacheInstallError: If this version was never installed
        """
        if self.cache_name not in self.storage.keys():
            raise CacheInstallError(f"{self.cache_name} is not installed")
        self.state = "active"

    # ---- Fetch handling ----
    def handle(self, request: Request) -> Optional[CachedResponse]:
        """
        Answer a request, or return None to let it pass through untouched.
        """
        if self.state != "active" or request.method.upper() != "GET":
            return None
        url = self.resolve(request.url)
        if not self.same_origin(url):
            return None

        cache = self.storage.open(self.cache_name)
        if request.mode == "navigate":
            return self._network_first(Request(url=url, mode="navigate"), cache)
        return self._cache_first(Request(url=url, mode=request.mode), cache)

    def _network_first(self, request: Request, cache: Cache) -> CachedResponse:
        shell_url = self.resolve(SHELL_PAGE)
        try:
            res = self.fetch(request)
        except NetworkError:
            logger.info("Offline; serving shell page for %s", request.url)
            return cache.match(shell_url) or cache.match(self.resolve("./")) or offline_response()
        if res.ok:
            cache.put(shell_url, res)
        return res

    def _cache_first(self, request: Request, cache: Cache) -> CachedResponse:
        cached = cache.match(request.url)
        if cached is not None:
            self._wait_until(self._executor.submit(self._revalidate, request, cache))
            return cached

        try:
            res = self.fetch(request)
        except NetworkError:
            return cache.match(self.resolve(SHELL_PAGE)) or offline_response()
        if res.ok:
            cache.put(request.url, res)
        return res

    def _revalidate(self, request: Request, cache: Cache):
        try:
            res = self.fetch(request)
        except NetworkError as e:
            logger.debug("Background refresh of %s failed: %s", request.url, e)
            return
        except Exception:
            logger.warning("Background refresh of %s failed", request.url, exc_info=True)
            return
        if res.ok:
            try:
                cache.put(request.url, res)
            except OSError as e:
                logger.warning("Could not store refreshed %s: %s", request.url, e)

    def _wait_until(self, future):
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def wait_until_idle(self, timeout: Optional[float] = None):
        """Block until background revalidations have finished."""
        with self._pending_lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def close(self):
        self._executor.shutdown(wait=True)
