"""Health polling — one independent repeating timer per exposed service.

Each service gets its own ``threading.Timer`` chain, so a probe that hangs
for one service never delays polling of another. A successful probe moves
the service from ``health_unknown`` to ``healthy``; a failed probe demotes
``healthy`` back to ``health_unknown``. Draining services are no longer
probed and are removed after their grace period.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

import httpx

from topoforge.core.router import ServiceLifecycle
from topoforge.models.routing import ServiceState

logger = logging.getLogger(__name__)


@runtime_checkable
class HealthProbe(Protocol):
    """Returns True when ``service`` answers its health check."""

    def __call__(self, service: str) -> bool: ...


class HttpHealthProbe:
    """Probes ``http://{host}:{port}{path}`` per service with httpx.

    Parameters
    ----------
    endpoints:
        ``service -> (host, port, path)``.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        endpoints: dict[str, tuple[str, int, str]],
        *,
        timeout: float = 2.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._endpoints = dict(endpoints)
        self._client = client or httpx.Client(timeout=timeout)

    def url(self, service: str) -> str:
        host, port, path = self._endpoints[service]
        return f"http://{host}:{port}{path}"

    def __call__(self, service: str) -> bool:
        try:
            response = self._client.get(self.url(service))
        except httpx.HTTPError as exc:
            logger.debug("Health probe for %s failed: %s", service, exc)
            return False
        return response.is_success

    def close(self) -> None:
        self._client.close()


class HealthPoller:
    """Drives ``ServiceLifecycle`` from periodic health probes.

    Parameters
    ----------
    lifecycle:
        Lifecycle tracker the poller reports into.
    probe:
        Callable deciding whether a service is healthy.
    interval:
        Seconds between probes of one service.
    """

    def __init__(
        self,
        lifecycle: ServiceLifecycle,
        probe: HealthProbe,
        *,
        interval: float = 10.0,
    ) -> None:
        self._lifecycle = lifecycle
        self._probe = probe
        self._interval = interval
        self._lock = threading.Lock()
        self._timers: dict[str, threading.Timer] = {}
        self._stopped: set[str] = set()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def watch(self, service: str) -> None:
        """Start polling ``service``; registers it if it is still ``defined``."""
        if self._lifecycle.state(service) == ServiceState.DEFINED:
            self._lifecycle.register(service)
        with self._lock:
            self._stopped.discard(service)
        self._schedule(service, 0.0)

    def _schedule(self, service: str, delay: float) -> None:
        with self._lock:
            if service in self._stopped:
                return
            timer = threading.Timer(delay, self._tick, args=(service,))
            timer.daemon = True
            self._timers[service] = timer
            timer.start()

    def _tick(self, service: str) -> None:
        self.poll_once(service)
        state = self._lifecycle.state(service)
        if state in (ServiceState.HEALTH_UNKNOWN, ServiceState.HEALTHY):
            self._schedule(service, self._interval)

    def poll_once(self, service: str) -> ServiceState:
        """Probe once and apply the resulting transition, if any."""
        state = self._lifecycle.state(service)
        if state not in (ServiceState.HEALTH_UNKNOWN, ServiceState.HEALTHY):
            return state
        try:
            healthy = bool(self._probe(service))
        except Exception:
            logger.exception("Health probe for %s raised", service)
            healthy = False

        # The service may have been drained while the check ran.
        if healthy and state == ServiceState.HEALTH_UNKNOWN:
            self._lifecycle.transition_if(
                service, state, ServiceState.HEALTHY, reason="probe succeeded"
            )
        elif not healthy and state == ServiceState.HEALTHY:
            self._lifecycle.transition_if(
                service, state, ServiceState.HEALTH_UNKNOWN, reason="probe failed"
            )
        return self._lifecycle.state(service)

    def unwatch(self, service: str) -> None:
        with self._lock:
            self._stopped.add(service)
            timer = self._timers.pop(service, None)
        if timer is not None:
            timer.cancel()

    def stop(self) -> None:
        """Cancel every pending timer."""
        with self._lock:
            self._stopped.update(self._timers)
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    def drain(self, service: str, grace_period: float) -> threading.Timer:
        """Stop routing new connections and remove after ``grace_period`` seconds."""
        self.unwatch(service)
        self._lifecycle.transition(service, ServiceState.DRAINING, reason="drain requested")

        def _remove() -> None:
            self._lifecycle.transition(
                service, ServiceState.REMOVED, reason="grace period elapsed"
            )

        timer = threading.Timer(grace_period, _remove)
        timer.daemon = True
        timer.start()
        return timer
