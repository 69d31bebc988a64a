"""Utilities for coordinating graceful shutdown behaviour across services."""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import threading
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, Set

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status as http_status


logger = logging.getLogger(__name__)

FlushCallback = Callable[[], Awaitable[None] | None]


def _normalise_path(path: str) -> str:
    """Return a canonical representation for FastAPI request paths."""

    if not path:
        return "/"
    clean = path.split("?", 1)[0]
    if clean != "/" and clean.endswith("/"):
        clean = clean.rstrip("/")
    return clean or "/"


class GracefulShutdownManager:
    """Tracks draining state and coordinates graceful shutdown hooks."""

    def __init__(
        self,
        service_name: str,
        *,
        allowed_paths: Optional[Iterable[str]] = None,
        shutdown_timeout: float = 30.0,
    ) -> None:
        self.service_name = service_name
        self._draining = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_started_at: Optional[datetime] = None
        self._shutdown_timeout = max(shutdown_timeout, 0.0)
        self._allowed_paths: Set[str] = {"/metrics", "/health"}
        for path in allowed_paths or ():
            self.allow_path(path)
        self._flush_callbacks: List[FlushCallback] = []

    @property
    def draining(self) -> bool:
        return self._draining

    @property
    def inflight(self) -> int:
        return self._inflight

    @property
    def shutdown_timeout(self) -> float:
        return self._shutdown_timeout

    def allow_path(self, path: str) -> None:
        self._allowed_paths.add(_normalise_path(path))

    def is_path_allowed(self, path: str) -> bool:
        return _normalise_path(path) in self._allowed_paths

    def register_flush_callback(self, callback: FlushCallback) -> None:
        self._flush_callbacks.append(callback)

    def start_draining(self, *, reason: str = "manual") -> bool:
        if self._draining:
            return False
        self._draining = True
        self._drain_started_at = datetime.now(timezone.utc)
        logger.info("Initiating drain for service %s (reason=%s)", self.service_name, reason)
        return True

    async def run_flush_callbacks(self) -> None:
        for callback in list(self._flush_callbacks):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:  # pragma: no cover - shutdown must continue past failures
                logger.exception("Flush callback failed during shutdown of %s", self.service_name)

    def increment_inflight(self) -> None:
        self._inflight += 1
        self._idle.clear()

    def decrement_inflight(self) -> None:
        self._inflight = max(self._inflight - 1, 0)
        if self._inflight == 0:
            self._idle.set()

    async def wait_for_inflight(self, timeout: Optional[float] = None) -> bool:
        if self._inflight == 0:
            return True
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def reset(self) -> None:
        """Reset draining state. Primarily used for tests where the app restarts."""

        self._draining = False
        self._inflight = 0
        self._idle.set()
        self._drain_started_at = None

    def status(self) -> dict:
        started_at = self._drain_started_at.isoformat() if self._drain_started_at else None
        return {
            "service": self.service_name,
            "draining": self._draining,
            "inflight": self._inflight,
            "started_at": started_at,
        }


def flush_logging_handlers(*logger_names: str) -> None:
    """Flush handlers for the provided loggers (including the root logger)."""

    if not logger_names:
        logger_names = ("",)
    seen_handlers: Set[int] = set()
    for name in logger_names:
        log = logging.getLogger(name)
        for handler in log.handlers:
            handler_id = id(handler)
            if handler_id in seen_handlers:
                continue
            seen_handlers.add(handler_id)
            with suppress(Exception):
                handler.flush()


def install_signal_handlers(
    manager: GracefulShutdownManager,
    signals: Iterable[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
) -> None:
    """Mark the service as draining on *signals*, then defer to the previous handler."""

    for signum in signals:
        original = signal.getsignal(signum)

        def _handle(received, frame, _original=original) -> None:  # pragma: no cover - signal path
            name = signal.Signals(received).name
            logger.info("%s received for %s; shutting down gracefully", name, manager.service_name)
            manager.start_draining(reason=name.lower())
            if callable(_original):
                _original(received, frame)
            elif _original in {signal.SIG_DFL, None}:
                raise SystemExit(0)

        signal.signal(signum, _handle)


def setup_graceful_shutdown(
    app: FastAPI,
    *,
    service_name: str,
    allowed_paths: Optional[Iterable[str]] = None,
    shutdown_timeout: float = 30.0,
    logger_instance: Optional[logging.Logger] = None,
) -> GracefulShutdownManager:
    """Configure draining middleware, signal handling, and shutdown flushing."""

    existing_manager = getattr(app.state, "_graceful_shutdown_manager", None)
    if existing_manager is not None:
        return existing_manager

    manager = GracefulShutdownManager(
        service_name,
        allowed_paths=allowed_paths,
        shutdown_timeout=shutdown_timeout,
    )
    service_logger = logger_instance or logger

    @app.middleware("http")
    async def _drain_guard(request: Request, call_next):
        if manager.draining and not manager.is_path_allowed(request.url.path):
            detail = {
                "error": f"{service_name} is shutting down",
                "status": manager.status(),
            }
            return JSONResponse(detail, status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE)
        manager.increment_inflight()
        try:
            return await call_next(request)
        finally:
            manager.decrement_inflight()

    async def _startup_actions() -> None:
        manager.reset()
        if threading.current_thread() is threading.main_thread():
            install_signal_handlers(manager)
        else:  # pragma: no cover - thread-local path used in test harnesses
            service_logger.debug("Skipping signal handler install outside main thread")

    async def _shutdown_actions() -> None:
        manager.start_draining(reason="shutdown_event")
        completed = await manager.wait_for_inflight(timeout=manager.shutdown_timeout)
        if not completed:
            service_logger.warning(
                "Timed out waiting for in-flight requests during shutdown of %s",
                service_name,
            )
        await manager.run_flush_callbacks()
        flush_logging_handlers()

    previous_lifespan = getattr(app.router, "lifespan_context", None)

    @asynccontextmanager
    async def _graceful_lifespan(app: FastAPI):
        if previous_lifespan is None:
            await _startup_actions()
            try:
                yield
            finally:
                await _shutdown_actions()
        else:
            async with previous_lifespan(app):
                await _startup_actions()
                try:
                    yield
                finally:
                    await _shutdown_actions()

    app.router.lifespan_context = _graceful_lifespan
    setattr(app.state, "_graceful_shutdown_manager", manager)

    return manager


__all__ = [
    "GracefulShutdownManager",
    "flush_logging_handlers",
    "install_signal_handlers",
    "setup_graceful_shutdown",
]
