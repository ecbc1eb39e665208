"""Periodic backend liveness monitor.

The health monitor probes a health endpoint on a fixed interval, independent
of the request path, and keeps the outcome of the latest probe. Listeners
are notified only when the healthy/unhealthy verdict flips.

Probes never raise. A failed probe is reported through ``HealthStatus.error``.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Mapping, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from ...exceptions import RequestTimeoutError, TransportError, ValidationError
from ...models import HealthConfig, HealthStatus
from .transport import HTTPTransport

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class HealthMonitor:
    """Probes a health endpoint and tracks the latest status.

    The monitor does not start on construction; call ``start`` from within
    a running event loop, or use it as an async context manager.

    :param config: Monitor configuration, merged over the defaults
    :type config: Optional[Union[HealthConfig, Mapping[str, Any]]]
    :param transport: Transport used for probes. When omitted, a dedicated
        ``httpx.AsyncClient`` is created and closed by ``destroy``.
    :type transport: Optional[HTTPTransport]
    :param base_url: Base URL for the fallback client
    :type base_url: str
    """

    def __init__(
        self,
        config: Optional[Union[HealthConfig, Mapping[str, Any]]] = None,
        transport: Optional[HTTPTransport] = None,
        base_url: str = "",
    ):
        self._config = self._merge(HealthConfig(), config)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        if transport is None:
            self._client = httpx.AsyncClient(base_url=base_url)
        self._status = HealthStatus()
        self._task: Optional[asyncio.Task] = None

    @staticmethod
    def _merge(
        base: HealthConfig, override: Optional[Union[HealthConfig, Mapping[str, Any]]]
    ) -> HealthConfig:
        if override is None:
            return base
        if isinstance(override, HealthConfig):
            override = {k: getattr(override, k) for k in override.model_fields_set}
        try:
            return HealthConfig(**{**dict(base), **dict(override)})
        except PydanticValidationError as e:
            first = e.errors()[0]
            raise ValidationError(
                f"Invalid health monitor configuration: {first.get('msg')}",
                field=".".join(str(p) for p in first.get("loc", ())) or None,
            ) from e

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def perform_health_check(self) -> HealthStatus:
        """Probe the health endpoint once and record the outcome.

        :return: The updated status
        :rtype: HealthStatus
        """
        timeout_ms = self._config.timeout
        start = _now_ms()
        error: Optional[str] = None
        try:
            status_code = await asyncio.wait_for(self._probe(), timeout=timeout_ms / 1000)
            if not 200 <= status_code < 300:
                error = f"Unhealthy status code: {status_code}"
        except asyncio.TimeoutError:
            error = f"Health check timed out after {timeout_ms:.0f}ms"
        except RequestTimeoutError as e:
            error = e.message
        except TransportError as e:
            if e.status:
                error = f"Unhealthy status code: {e.status}"
            else:
                error = e.message
        except Exception as e:
            # Probes report failures through the status, never by raising
            error = str(e) or type(e).__name__

        now = _now_ms()
        healthy = error is None
        previous = self._status.is_healthy
        self._status = HealthStatus(
            is_healthy=healthy,
            last_check_time=now,
            last_healthy_time=now if healthy else self._status.last_healthy_time,
            response_time_ms=now - start,
            error=error,
        )

        if healthy:
            logger.debug(f"Health check passed in {now - start:.0f}ms")
        else:
            logger.warning(f"Health check failed: {error}")

        if previous != healthy:
            await self._notify(healthy)
        return self.get_status()

    async def _probe(self) -> int:
        endpoint = self._config.endpoint
        timeout_ms = self._config.timeout
        if self._transport is not None:
            response = await self._transport.get(endpoint, timeout=timeout_ms)
            return response.status
        response = await self._client.get(endpoint, timeout=timeout_ms / 1000)
        return response.status_code

    async def _notify(self, healthy: bool) -> None:
        callback = self._config.on_status_change
        logger.info(f"Backend health changed: {'healthy' if healthy else 'unhealthy'}")
        if callback is None:
            return
        try:
            result = callback(healthy)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Health status callback failed: {e}")

    async def _run(self) -> None:
        while True:
            await self.perform_health_check()
            await asyncio.sleep(self._config.interval / 1000)

    def start(self) -> None:
        """Begin periodic probing: one probe now, then one every interval.

        Does nothing when disabled or already running.

        :raises RuntimeError: If called without a running event loop
        """
        if not self._config.enabled or self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())
        logger.info(
            f"Health monitor started for {self._config.endpoint} "
            f"every {self._config.interval:.0f}ms"
        )

    def stop(self) -> None:
        """Cancel periodic probing. Safe to call when not running."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Health monitor stopped")

    async def check_now(self) -> HealthStatus:
        """Probe immediately without touching the periodic schedule."""
        return await self.perform_health_check()

    async def destroy(self) -> None:
        """Stop probing and release the fallback client."""
        task = self._task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def update_config(self, partial: Mapping[str, Any]) -> None:
        """Merge configuration and adjust the schedule.

        Disabling stops the monitor, enabling starts it, and an interval
        change restarts a running monitor. Enabling outside a running event
        loop only updates the configuration; call ``start`` later from
        async code.
        """
        old_interval = self._config.interval
        self._config = self._merge(self._config, partial)

        if not self._config.enabled:
            self.stop()
        elif not self.is_running and partial.get("enabled") is True:
            if _has_running_loop():
                self.start()
            else:
                logger.debug("Health monitor enabled without a running loop, not started")
        elif self.is_running and self._config.interval != old_interval:
            self.stop()
            self.start()

    def get_status(self) -> HealthStatus:
        return self._status.model_copy()

    def is_healthy(self) -> bool:
        return self._status.is_healthy

    def get_time_since_healthy(self) -> Optional[float]:
        """Milliseconds since the last successful probe, None if never."""
        if not self._status.last_healthy_time:
            return None
        return _now_ms() - self._status.last_healthy_time

    def get_time_since_last_check(self) -> Optional[float]:
        """Milliseconds since the last probe, None if never."""
        if not self._status.last_check_time:
            return None
        return _now_ms() - self._status.last_check_time

    def get_config(self) -> HealthConfig:
        return self._config.model_copy()

    async def __aenter__(self) -> "HealthMonitor":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.destroy()
