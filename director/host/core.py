"""
director.host.core — Background Host Process
=============================================

:class:`DirectorHost` is the long-running process around one
:class:`~director.engine.session.SessionEngine`:

1. Wires the bus subscriptions (whispers and currency-spend events).
2. Runs startup: context → settings → hydrate → tip menu → leadership
   sync → overlay open → persist → broadcast.
3. Keeps four asyncio loops alive:

   * ``tick``              — every second, performance rollover + cooldowns.
   * ``tip-menu-refresh``  — every ``tipMenuRefreshSec``.
   * ``backend-heartbeat`` — every 15 s, re-push the current snapshot.
   * ``state-heartbeat``   — every 7 s, rebroadcast state to late joiners.

A ``director.settings.updated`` whisper reloads settings (inside the
engine) and restarts the refresh and backend loops so new intervals and
endpoints take effect.

Without a real platform connection the host answers the platform RPCs
itself via :func:`build_local_bus`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from director.config import HostConfig
from director.engine.events import SETTINGS_UPDATED, SettingsUpdated
from director.engine.reconciler import SnapshotReconciler
from director.engine.session import SessionEngine
from director.services import bus as bus_api
from director.services.bus import LocalBus, MessageBus
from director.services.local_store import LocalSnapshotStore

logger = logging.getLogger(__name__)

TICK_SEC = 1.0
BACKEND_HEARTBEAT_SEC = 15.0
STATE_HEARTBEAT_SEC = 7.0


def build_local_bus(cfg: HostConfig) -> LocalBus:
    """A :class:`LocalBus` answering the platform RPCs from *cfg*."""
    bus = LocalBus()
    stored_settings: dict[str, Any] = dict(cfg.settings)

    def context_get(_params: Any) -> dict[str, Any]:
        return {
            "model": {"id": cfg.session_id},
            "user": {"id": f"{cfg.session_id}_host", "username": cfg.session_id},
        }

    def settings_get(_params: Any) -> dict[str, Any]:
        return {"settings": dict(stored_settings)}

    async def settings_set(params: Any) -> None:
        if isinstance(params, dict) and isinstance(params.get("settings"), dict):
            stored_settings.update(params["settings"])
        await bus.request(bus_api.WHISPER, {"data": {"type": SETTINGS_UPDATED}})

    def tip_menu_get(_params: Any) -> dict[str, Any]:
        # No platform menu offline; the engine falls back to the text spec
        return {"tipMenu": {"isEnabled": False, "settings": []}}

    def chat_send(params: Any) -> None:
        message = params.get("message") if isinstance(params, dict) else None
        logger.info("Chat │ %s", message)

    def overlay_open(_params: Any) -> None:
        logger.info("Overlay open requested")

    bus.register(bus_api.CONTEXT_GET, context_get)
    bus.register(bus_api.SETTINGS_GET, settings_get)
    bus.register(bus_api.SETTINGS_SET, settings_set)
    bus.register(bus_api.TIP_MENU_GET, tip_menu_get)
    bus.register(bus_api.CHAT_SEND, chat_send)
    bus.register(bus_api.OVERLAY_OPEN, overlay_open)
    return bus


class DirectorHost:
    """Owns the engine, its bus subscriptions and the periodic loops."""

    def __init__(
        self,
        cfg: HostConfig,
        bus: MessageBus | None = None,
        engine: SessionEngine | None = None,
    ) -> None:
        self.cfg = cfg
        self.bus = bus or build_local_bus(cfg)
        self.engine = engine or SessionEngine(
            self.bus,
            SnapshotReconciler(LocalSnapshotStore(cfg.local_state_path)),
        )
        self._tasks: dict[str, asyncio.Task] = {}
        self._stopped = asyncio.Event()

    # -----------------------------------------------------------------------
    # Startup
    # -----------------------------------------------------------------------
    async def initialize(self) -> None:
        engine = self.engine
        await engine.load_context()
        await engine.load_settings()
        await engine.hydrate()

        if not engine.state.tip_menu.settings:
            await engine.load_tip_menu()
        else:
            engine.derive_menu_goals()
        engine.sync_leadership()

        self.bus.subscribe(bus_api.WHISPERED, self._on_whisper)
        self.bus.subscribe(bus_api.TOKENS_SPENT, self._on_tokens_spent)

        await engine.request_overlay_open()
        self.start_loops()

        engine.persist()
        await engine.broadcast_state()
        logger.info(
            "Director host ready — session=%s live=%s users=%d",
            engine.reconciler.session_id, engine.state.is_live, len(engine.state.users),
        )

    # -----------------------------------------------------------------------
    # Bus handlers
    # -----------------------------------------------------------------------
    async def _on_whisper(self, data: Any) -> None:
        event = await self.engine.handle_whisper(data)
        if isinstance(event, SettingsUpdated):
            self.restart_settings_loops()

    async def _on_tokens_spent(self, payload: Any) -> None:
        await self.engine.handle_tip_contribution(payload)

    # -----------------------------------------------------------------------
    # Loops
    # -----------------------------------------------------------------------
    def _start_loop(
        self,
        name: str,
        interval: Callable[[], float],
        action: Callable[[], Awaitable[Any]],
    ) -> None:
        previous = self._tasks.pop(name, None)
        if previous is not None:
            previous.cancel()

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval())
                try:
                    await action()
                except Exception:
                    logger.exception("%s loop error", name)

        self._tasks[name] = asyncio.get_running_loop().create_task(_loop(), name=name)

    async def _backend_heartbeat(self) -> None:
        self.engine.persist_heartbeat()

    def start_loops(self) -> None:
        self._start_loop("tick", lambda: TICK_SEC, self.engine.tick)
        self._start_loop("state-heartbeat", lambda: STATE_HEARTBEAT_SEC, self.engine.broadcast_state)
        self.restart_settings_loops()

    def restart_settings_loops(self) -> None:
        """(Re)start the loops whose interval or target depends on settings."""
        self._start_loop(
            "tip-menu-refresh",
            lambda: float(self.engine.settings.tip_menu_refresh_sec),
            self.engine.refresh_tip_menu,
        )
        self._start_loop("backend-heartbeat", lambda: BACKEND_HEARTBEAT_SEC, self._backend_heartbeat)

    @property
    def loop_names(self) -> list[str]:
        return sorted(self._tasks)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------
    async def run(self) -> None:
        """Initialize and keep running until :meth:`stop` is called."""
        await self.initialize()
        try:
            await self._stopped.wait()
        finally:
            await self.close()

    def stop(self) -> None:
        self._stopped.set()

    async def close(self) -> None:
        """Cancel the loops and let pending remote writes finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.engine.reconciler.flush()
        logger.info("Director host stopped")
