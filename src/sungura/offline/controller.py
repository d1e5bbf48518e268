"""
Offline cache controller.

Sits between the application shell and the network, the way a service
worker does for the farm PWA:

- install: pre-cache the app shell (essential set as a unit, then optional
  assets best-effort), then request immediate activation
- activate: delete every cache store that is not the current version and
  claim all open clients
- handle: network-first for documents, cache-first for static assets,
  straight to the network for anything not cacheable
- quota_guard: purge stale stores before writes when storage is nearly full
- handle_push / handle_notification_click: surface push messages

Cache storage is an optimization here. Every storage call is guarded, so a
broken or full cache degrades to network-only behavior and a response is
always produced for cacheable requests.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urljoin, urlsplit

import httpx

from sungura.config import Settings
from sungura.exceptions import InstallError
from sungura.logging import get_logger, log_context
from sungura.offline.classify import (
    Cacheability,
    Destination,
    classify_request,
    request_destination,
)
from sungura.offline.clients import AppClient, ClientRegistry, SignalBus
from sungura.offline.fallbacks import (
    empty_response,
    offline_page_response,
    placeholder_image_response,
)
from sungura.offline.notifications import (
    Notification,
    NotificationClick,
    NotificationSink,
    build_notification,
    decode_push_payload,
)
from sungura.offline.storage import STORAGE_ERRORS, CacheStorage, StoredResponse

logger = get_logger(__name__)


ESSENTIAL_ASSETS: tuple[str, ...] = (
    "/",
    "/offline.html",
    "/manifest.json",
    "/icons/icon-192x192.png",
    "/icons/icon-512x512.png",
)

OPTIONAL_ASSETS: tuple[str, ...] = (
    "/icons/icon-72x72.png",
    "/icons/icon-96x96.png",
    "/icons/icon-128x128.png",
    "/icons/icon-144x144.png",
    "/icons/icon-152x152.png",
    "/icons/icon-384x384.png",
)


class ControllerState(str, Enum):
    """Lifecycle state of a controller."""

    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


@dataclass(frozen=True)
class InstallManifest:
    """Assets pre-cached on install, as origin-relative paths."""

    essential: tuple[str, ...] = ESSENTIAL_ASSETS
    optional: tuple[str, ...] = OPTIONAL_ASSETS


@dataclass
class InstallReport:
    """Outcome of an install run."""

    essential_cached: bool = False
    cached: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class OfflineCacheController:
    """Cache-backed request handler for the application shell.

    Args:
        storage: Cache storage backend.
        network: HTTP client used to reach the network.
        origin: Application origin, e.g. ``https://farm.example``.
        cache_name: Name of the current cache store.
        offline_url: Path of the pre-cached offline page.
        manifest: Assets to pre-cache on install.
        quota_threshold: Usage/quota ratio at which stale stores are purged.
        clients: Registry of open application clients.
        notifications: Surface that displays push notifications.
        signals: Bus receiving "installed" and "activated".
        notification_title: Title used for push notifications.
        extra_exclusions: Additional never-cache path patterns.
    """

    def __init__(
        self,
        storage: CacheStorage,
        network: httpx.AsyncClient,
        *,
        origin: str,
        cache_name: str,
        offline_url: str = "/offline.html",
        manifest: InstallManifest | None = None,
        quota_threshold: float = 0.8,
        clients: ClientRegistry | None = None,
        notifications: NotificationSink | None = None,
        signals: SignalBus | None = None,
        notification_title: str = "Sungura Master",
        extra_exclusions: tuple[re.Pattern[str], ...] = (),
    ) -> None:
        self.storage = storage
        self.network = network
        self.origin = origin.rstrip("/")
        self.cache_name = cache_name
        self.offline_url = offline_url
        self.manifest = manifest or InstallManifest()
        self.quota_threshold = quota_threshold
        self.clients = clients
        self.notifications = notifications
        self.signals = signals or SignalBus()
        self.notification_title = notification_title
        self.extra_exclusions = extra_exclusions

        self.state = ControllerState.PARSED
        self.skip_waiting_requested = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        storage: CacheStorage,
        network: httpx.AsyncClient,
        **kwargs: Any,
    ) -> OfflineCacheController:
        """Build a controller configured from application settings.

        Requests under the API base path are never cached, wherever the
        API is mounted.
        """
        exclusions = tuple(kwargs.pop("extra_exclusions", ()))
        api_path = urlsplit(settings.API_BASE_URL).path.rstrip("/")
        if api_path:
            exclusions += (re.compile(rf"^{re.escape(api_path)}(/|$)"),)
        return cls(
            storage,
            network,
            origin=settings.APP_ORIGIN,
            cache_name=settings.current_cache_name,
            offline_url=settings.OFFLINE_URL,
            quota_threshold=settings.QUOTA_PURGE_THRESHOLD,
            notification_title=settings.NOTIFICATION_TITLE,
            extra_exclusions=exclusions,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def install(self) -> InstallReport:
        """Pre-cache the app shell and request immediate activation.

        The essential set is fetched first and written only if every fetch
        succeeds. A failure there is logged and does not abort install.
        Optional assets are then cached one by one, best-effort.

        Returns:
            InstallReport describing what was cached.
        """
        self.state = ControllerState.INSTALLING
        report = InstallReport()

        with log_context(component="offline"):
            logger.info("Installing offline controller", cache_name=self.cache_name)

            try:
                report.essential_cached = await self._cache_essentials(report)
            except InstallError as e:
                logger.warning(
                    "Essential assets not cached, continuing install",
                    error=str(e),
                )

            for path in self.manifest.optional:
                if path in report.cached:
                    continue
                try:
                    response = await self.network.get(self._absolute(path))
                except httpx.RequestError as e:
                    report.failed[path] = str(e)
                    logger.debug("Optional asset unavailable", path=path, error=str(e))
                    continue
                if not response.is_success:
                    report.failed[path] = f"HTTP {response.status_code}"
                    continue
                if await self._safe_put(self._asset_request(path), response):
                    report.cached.append(path)

            self.state = ControllerState.INSTALLED
            logger.info(
                "Offline controller installed",
                cached=len(report.cached),
                failed=len(report.failed),
                essential_cached=report.essential_cached,
            )

        self.signals.emit("installed", controller=self)
        self.skip_waiting()
        return report

    async def _cache_essentials(self, report: InstallReport) -> bool:
        """Fetch the essential set as a unit, then write it.

        Returns:
            True if every essential asset was written to the cache.

        Raises:
            InstallError: If any essential asset could not be fetched.
        """
        fetched: list[tuple[str, httpx.Response]] = []
        for path in self.manifest.essential:
            try:
                response = await self.network.get(self._absolute(path))
            except httpx.RequestError as e:
                report.failed[path] = str(e)
                raise InstallError(
                    f"Failed to fetch essential asset {path}",
                    context={"path": path, "error": str(e)},
                ) from e
            if not response.is_success:
                report.failed[path] = f"HTTP {response.status_code}"
                raise InstallError(
                    f"Essential asset {path} returned HTTP {response.status_code}",
                    context={"path": path, "status_code": response.status_code},
                )
            fetched.append((path, response))

        stored = True
        for path, response in fetched:
            if await self._safe_put(self._asset_request(path), response):
                report.cached.append(path)
            else:
                stored = False
        return stored

    def skip_waiting(self) -> None:
        """Ask to become the active controller without waiting for old clients."""
        self.skip_waiting_requested = True

    async def activate(self) -> list[str]:
        """Delete stale cache stores and claim every open client.

        Cleanup failures are logged; activation always completes.

        Returns:
            Names of the stores that were deleted.
        """
        self.state = ControllerState.ACTIVATING

        with log_context(component="offline"):
            deleted = await self._purge_stale_stores()

            claimed = self.clients.claim(self) if self.clients is not None else 0
            self.state = ControllerState.ACTIVATED
            logger.info(
                "Offline controller activated",
                cache_name=self.cache_name,
                deleted_stores=deleted,
                claimed_clients=claimed,
            )

        self.signals.emit("activated", controller=self)
        return deleted

    async def _purge_stale_stores(self) -> list[str]:
        """Delete every store whose name is not the current cache name."""
        try:
            names = await self.storage.keys()
        except STORAGE_ERRORS as e:
            logger.warning("Could not list cache stores", error=str(e))
            return []

        deleted: list[str] = []
        for name in names:
            if name == self.cache_name:
                continue
            try:
                if await self.storage.delete(name):
                    deleted.append(name)
                    logger.info("Deleted stale cache store", store=name)
            except STORAGE_ERRORS as e:
                logger.warning("Failed to delete cache store", store=name, error=str(e))
        return deleted

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        """Answer a request from the network, the cache, or a fallback.

        Non-cacheable requests go straight to the network and network errors
        propagate to the caller. Cacheable requests always get a response.

        Args:
            request: The outgoing request.

        Returns:
            The response to deliver.
        """
        if classify_request(request, self.extra_exclusions) is Cacheability.NOT_CACHEABLE:
            return await self.network.send(request)

        destination = request_destination(request)
        if destination is Destination.DOCUMENT:
            return await self._network_first(request)
        return await self._cache_first(request, destination)

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        """Documents: network, then cache, then offline page, then synthesized page."""
        try:
            response = await self.network.send(request)
        except httpx.RequestError as e:
            logger.info(
                "Navigation failed, serving offline fallback",
                url=str(request.url),
                error=str(e),
            )
            return await self._offline_fallback(request)

        if response.status_code == 200:
            await self._safe_put(request, response)
        return response

    async def _offline_fallback(self, request: httpx.Request) -> httpx.Response:
        cached = await self._safe_match(request)
        if cached is not None:
            return cached

        offline_page = await self._safe_match(self._asset_request(self.offline_url))
        if offline_page is not None:
            return offline_page

        return offline_page_response(request, self.notification_title)

    async def _cache_first(
        self, request: httpx.Request, destination: Destination
    ) -> httpx.Response:
        """Static assets: cache, then network (storing 200s), then placeholder."""
        cached = await self._safe_match(request)
        if cached is not None:
            return cached

        try:
            response = await self.network.send(request)
        except httpx.RequestError as e:
            logger.debug("Asset fetch failed", url=str(request.url), error=str(e))
            if destination is Destination.IMAGE:
                return placeholder_image_response(request)
            return empty_response(request)

        if response.status_code == 200 and self._same_origin(request.url):
            await self._safe_put(request, response)
        return response

    # ------------------------------------------------------------------
    # Guarded cache access
    # ------------------------------------------------------------------

    async def quota_guard(self) -> bool:
        """Purge stale stores when usage reaches the quota threshold.

        Returns:
            True if a purge ran.
        """
        try:
            estimate = await self.storage.estimate()
        except STORAGE_ERRORS as e:
            logger.debug("Storage estimate unavailable", error=str(e))
            return False

        if estimate is None or estimate.ratio < self.quota_threshold:
            return False

        logger.warning(
            "Cache storage near quota, purging stale stores",
            usage=estimate.usage,
            quota=estimate.quota,
            ratio=round(estimate.ratio, 3),
        )
        await self._purge_stale_stores()
        return True

    async def _safe_put(self, request: httpx.Request, response: httpx.Response) -> bool:
        """Write a response into the current store. Returns False on failure."""
        await self.quota_guard()
        try:
            store = await self.storage.open(self.cache_name)
            await store.put(request, response)
        except STORAGE_ERRORS as e:
            logger.warning(
                "Cache write failed",
                url=str(request.url),
                store=self.cache_name,
                error=str(e),
            )
            return False
        return True

    async def _safe_match(self, request: httpx.Request) -> httpx.Response | None:
        """Look a request up in the current store. Returns None on failure."""
        try:
            store = await self.storage.open(self.cache_name)
            return await store.match(request)
        except STORAGE_ERRORS as e:
            logger.warning(
                "Cache read failed",
                url=str(request.url),
                store=self.cache_name,
                error=str(e),
            )
            return None

    # ------------------------------------------------------------------
    # Push notifications
    # ------------------------------------------------------------------

    async def handle_push(self, payload: bytes | str | dict[str, Any] | None) -> Notification | None:
        """Decode a push payload and display it.

        A payload that cannot be decoded or displayed is dropped with a log.

        Returns:
            The displayed notification, or None.
        """
        try:
            fields = decode_push_payload(payload)
        except ValueError as e:
            logger.warning("Dropping undecodable push payload", error=str(e))
            return None
        if fields is None:
            return None

        notification = build_notification(fields, self.notification_title)
        if self.notifications is None:
            logger.debug("No notification sink, push not displayed", body=notification.body)
            return None

        try:
            await self.notifications.show(notification)
        except Exception as e:
            logger.warning("Failed to display push notification", error=str(e))
            return None

        logger.info("Displayed push notification", primary_key=notification.data.get("primary_key"))
        return notification

    async def handle_notification_click(self, click: NotificationClick) -> AppClient | None:
        """Close the notification and, unless dismissed, focus or open its URL.

        Returns:
            The client now showing the notification URL, or None.
        """
        if self.notifications is not None:
            try:
                await self.notifications.close(click.notification)
            except Exception as e:
                logger.debug("Failed to close notification", error=str(e))

        if click.action == "dismiss" or self.clients is None:
            return None

        url = self._absolute(click.notification.url)
        existing = self.clients.find(url)
        if existing is not None:
            existing.focus()
            return existing
        return self.clients.open_window(url, controller=self)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _absolute(self, path: str) -> str:
        return urljoin(self.origin + "/", path)

    def _asset_request(self, path: str) -> httpx.Request:
        return httpx.Request("GET", self._absolute(path))

    def _same_origin(self, url: httpx.URL) -> bool:
        origin = urlsplit(self.origin)
        return (url.scheme, url.netloc.decode("ascii")) == (origin.scheme, origin.netloc)


def detach_response(response: httpx.Response, request: httpx.Request) -> httpx.Response:
    """Copy a fully read response so it can be returned from a transport."""
    return StoredResponse.from_response(response, str(request.url)).to_response(request)
