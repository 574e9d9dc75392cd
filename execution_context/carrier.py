"""Process-wide async execution-context carrier.

Lets code deep inside an async call chain recover the execution context of
the logical caller without threading it through every signature.

The carrier is built lazily on first use and lives for the rest of the
process. If context-local storage cannot be loaded, a degraded handle that
never reports a context is installed instead and a single warning is logged.
Callers of `acquire_carrier()` never see a construction failure.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
from types import ModuleType
from typing import Any, Callable

import structlog

from execution_context.config import Settings, get_settings
from execution_context.errors import ContextUnavailableError, ExecutionContextError
from execution_context.handles import (
    AsyncContext,
    CarrierHandle,
    DegradedCarrier,
    NativeCarrier,
)

logger = structlog.get_logger()

SLOT_KEY = "execution_context:carrier"

_REQUIRED_ATTRIBUTES = ("ContextVar", "copy_context")


class CapabilityUnavailableError(ExecutionContextError):
    def __init__(self, *, message: str, meta: dict[str, Any] | None = None):
        super().__init__(code="context.capability_unavailable", message=message, meta=meta)


async def _probe_capability(settings: Settings) -> ModuleType:
    """Load the context-local storage module, raising if it is unusable."""
    if not settings.async_context_enabled:
        raise CapabilityUnavailableError(message="Async context disabled by configuration")

    module = await asyncio.to_thread(importlib.import_module, settings.async_context_module)
    missing = [name for name in _REQUIRED_ATTRIBUTES if not hasattr(module, name)]
    if missing:
        raise CapabilityUnavailableError(
            message=f"{settings.async_context_module} does not provide {', '.join(missing)}",
            meta={"missing": missing},
        )
    return module


async def build_carrier(settings: Settings | None = None) -> CarrierHandle:
    """Build a carrier handle. Never raises; falls back to the degraded handle."""
    try:
        settings = settings or get_settings()
        capability = await _probe_capability(settings)
    except Exception as exc:
        logger.warning(
            "Context propagation unsupported in this runtime; disabled",
            slot=SLOT_KEY,
            error=str(exc),
        )
        return DegradedCarrier()

    logger.debug("Context propagation enabled", slot=SLOT_KEY, module=capability.__name__)
    return NativeCarrier(capability)


class CarrierSlot:
    """Holds the one carrier handle of the process.

    Lifecycle: unconstructed -> constructing -> constructed. The in-flight
    construction task is memoized so concurrent first callers share it. The
    check and the memoization happen with no `await` in between.
    """

    def __init__(self, key: str) -> None:
        self.key = key
        self._handle: CarrierHandle | None = None
        self._pending: asyncio.Task[CarrierHandle] | None = None

    @property
    def handle(self) -> CarrierHandle | None:
        return self._handle

    @property
    def state(self) -> str:
        if self._handle is not None:
            return "constructed"
        if self._pending is not None and not self._pending.done():
            return "constructing"
        return "unconstructed"

    async def _construct(self) -> CarrierHandle:
        handle = await build_carrier()
        self._handle = handle
        return handle

    async def acquire(self) -> CarrierHandle:
        if self._handle is not None:
            return self._handle
        if self._pending is None or self._pending.cancelled():
            self._pending = asyncio.ensure_future(self._construct())
        # Shield so a cancelled caller does not cancel construction for everyone.
        return await asyncio.shield(self._pending)

    def reset(self) -> None:
        """Forget the handle. Tests only."""
        self._handle = None
        self._pending = None


_slot = CarrierSlot(SLOT_KEY)


def get_carrier_slot() -> CarrierSlot:
    return _slot


async def acquire_carrier() -> CarrierHandle:
    """Return the process-wide carrier handle, building it on first call."""
    return await _slot.acquire()


async def get_current_context() -> AsyncContext | None:
    """Retrieve the async context for the current execution, if any."""
    carrier = await acquire_carrier()
    return carrier.get_store()


def current_context_nowait() -> AsyncContext | None:
    """Synchronous variant of `get_current_context`.

    Returns None while the carrier has not been built; never starts a build.
    """
    handle = _slot.handle
    if handle is None:
        return None
    return handle.get_store()


async def run_with_context(context: AsyncContext, fn: Callable[[], Any]) -> Any:
    """Run `fn` with `context` installed and return its (awaited) result."""
    carrier = await acquire_carrier()
    result = carrier.run(context, fn)
    if inspect.isawaitable(result):
        return await result
    return result


async def require_current_context() -> AsyncContext:
    """Like `get_current_context` but raises when no context is active."""
    store = await get_current_context()
    if store is None:
        raise ContextUnavailableError(meta={"slot": SLOT_KEY})
    return store


async def carrier_healthcheck() -> dict[str, Any]:
    """
    Best-effort health check used by ops endpoints.

    Returns a dict so callers can include it in JSON responses.
    """
    try:
        carrier = await acquire_carrier()
        return {"ok": True, "native": bool(carrier.is_native), "slot": _slot.key}
    except Exception as exc:
        return {"ok": False, "slot": _slot.key, "error": str(exc)}


def reset_carrier_for_tests() -> None:
    """Clear the process-wide slot so the next access builds a new carrier."""
    _slot.reset()
