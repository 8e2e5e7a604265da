"""
ConnectivityMonitor - online/offline state machine with reconnect recovery.

States:
- ONLINE: Normal operation
- OFFLINE: Network lost, polling suspended
- RECONNECTING_GRACE: Back online after an outage; lasts a short window
  during which a "reconnected" banner is shown

Transitions:
- ONLINE → OFFLINE: report(False), or a network-level transport failure
- OFFLINE → RECONNECTING_GRACE: report(True); reconnect listeners fire once
- RECONNECTING_GRACE → ONLINE: grace window elapsed
- RECONNECTING_GRACE → OFFLINE: lost again during the window

Signals come from the embedding application (``report``), from the
ApiClient as a transport observer, or from an optional periodic probe.
"""

import functools
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import httpx
from loguru import logger

from newsdash.services.clock import Clock, Timers


class ConnectivityPhase(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    RECONNECTING_GRACE = "reconnecting-grace"


@dataclass(frozen=True)
class ConnectivityState:
    is_online: bool = True
    was_offline: bool = False
    last_transition_at: float | None = None
    phase: ConnectivityPhase = ConnectivityPhase.ONLINE

    @property
    def show_reconnected_banner(self) -> bool:
        return self.phase == ConnectivityPhase.RECONNECTING_GRACE


class ConnectivityMonitor:
    GRACE_TIMER = "connectivity:grace"
    DEBOUNCE_TIMER = "connectivity:debounce"

    def __init__(
        self,
        timers: Timers,
        clock: Clock | None = None,
        grace_seconds: float = 3.0,
        debounce_seconds: float = 0.0,
        initially_online: bool = True,
    ):
        self._timers = timers
        self._clock = clock or Clock()
        self._grace_seconds = grace_seconds
        self._debounce_seconds = debounce_seconds
        self._state = ConnectivityState(
            is_online=initially_online,
            was_offline=not initially_online,
            phase=(
                ConnectivityPhase.ONLINE
                if initially_online
                else ConnectivityPhase.OFFLINE
            ),
        )
        self._pending: bool | None = None
        self._change_listeners: list[Callable[[ConnectivityState], None]] = []
        self._reconnect_listeners: list[Callable[[], None]] = []

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state.is_online

    def report(self, online: bool) -> None:
        """Feed an online/offline signal. Repeats of the current state are ignored."""
        if self._debounce_seconds <= 0:
            self._apply(online)
            return

        if online == self._state.is_online:
            # Flapped back before the debounce window elapsed
            if self._pending is not None:
                self._timers.cancel(self.DEBOUNCE_TIMER)
                self._pending = None
            return

        if self._pending == online:
            return
        self._pending = online
        self._timers.schedule(
            self.DEBOUNCE_TIMER, self._debounce_seconds, self._commit_pending
        )

    async def _commit_pending(self) -> None:
        pending, self._pending = self._pending, None
        if pending is not None:
            self._apply(pending)

    def _apply(self, online: bool) -> None:
        if online == self._state.is_online:
            return

        now = self._clock.now()
        if not online:
            self._timers.cancel(self.GRACE_TIMER)
            self._state = ConnectivityState(
                is_online=False,
                was_offline=True,
                last_transition_at=now,
                phase=ConnectivityPhase.OFFLINE,
            )
            logger.warning("[Network] Connection lost")
            self._notify_change()
            return

        self._state = ConnectivityState(
            is_online=True,
            was_offline=True,
            last_transition_at=now,
            phase=ConnectivityPhase.RECONNECTING_GRACE,
        )
        logger.info("[Network] Connection restored")
        self._timers.schedule(self.GRACE_TIMER, self._grace_seconds, self._end_grace)
        self._notify_change()
        for callback in list(self._reconnect_listeners):
            callback()

    async def _end_grace(self) -> None:
        if self._state.phase != ConnectivityPhase.RECONNECTING_GRACE:
            return
        self._state = ConnectivityState(
            is_online=True,
            was_offline=False,
            last_transition_at=self._clock.now(),
            phase=ConnectivityPhase.ONLINE,
        )
        self._notify_change()

    # TransportObserver

    def observe_response(self, response: httpx.Response) -> None:
        self.report(True)

    def observe_network_failure(self, exc: Exception) -> None:
        if isinstance(exc, httpx.NetworkError):
            self.report(False)

    async def check(self, probe: Callable[[], Awaitable[bool]]) -> bool:
        """Run an active reachability probe and report its outcome."""
        online = await probe()
        self.report(online)
        return online

    # Listeners

    def on_change(
        self, callback: Callable[[ConnectivityState], None]
    ) -> Callable[[], None]:
        self._change_listeners.append(callback)
        return functools.partial(self._remove, self._change_listeners, callback)

    def on_reconnected(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._reconnect_listeners.append(callback)
        return functools.partial(self._remove, self._reconnect_listeners, callback)

    @staticmethod
    def _remove(listeners: list, callback: Callable) -> None:
        if callback in listeners:
            listeners.remove(callback)

    def _notify_change(self) -> None:
        for callback in list(self._change_listeners):
            callback(self._state)

    def close(self) -> None:
        self._timers.cancel(self.GRACE_TIMER)
        self._timers.cancel(self.DEBOUNCE_TIMER)
