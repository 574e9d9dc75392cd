"""Carrier handles: the native contextvars-backed one and the degraded fallback.

Both satisfy `CarrierHandle`, so callers never branch on which one they hold.
"""

from __future__ import annotations

import inspect
from contextlib import contextmanager
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Callable, Coroutine, Generator, Iterator, Protocol, TypeVar

R = TypeVar("R")


@dataclass(frozen=True)
class AsyncContext:
    """Store threaded through an async call chain.

    `ctx` is the logical execution context owned by the execution engine; the
    carrier never looks inside it.
    """

    ctx: Any


class CarrierHandle(Protocol):
    """Minimal protocol shared by both handle kinds."""

    is_native: bool

    def get_store(self) -> AsyncContext | None:
        ...

    def run(self, store: AsyncContext, fn: Callable[[], R]) -> R:
        ...

    def scope(self, store: AsyncContext) -> Any:
        ...


class _StepInContext:
    """Drive a coroutine one step at a time inside a fixed `Context`."""

    def __init__(self, coro: Coroutine[Any, Any, Any], context: Any) -> None:
        self._coro = coro
        self._context = context

    def __await__(self) -> Generator[Any, Any, Any]:
        send = self._coro.send
        throw = self._coro.throw
        value: Any = None
        error: BaseException | None = None
        while True:
            try:
                if error is None:
                    yielded = self._context.run(send, value)
                else:
                    yielded = self._context.run(throw, error)
            except StopIteration as stop:
                return stop.value
            try:
                value = yield yielded
                error = None
            except GeneratorExit:
                self._context.run(self._coro.close)
                raise
            except BaseException as exc:
                value, error = None, exc


async def _run_in_context(coro: Coroutine[Any, Any, R], context: Any) -> R:
    return await _StepInContext(coro, context)


class NativeCarrier:
    """Carrier backed by a `ContextVar`.

    `run` copies the caller's context, installs the store in the copy and
    executes `fn` there. Tasks and callbacks scheduled from inside inherit a
    copy of that context, and the caller's own context is never touched, so
    nested runs shadow and then restore the outer store.
    """

    is_native = True

    def __init__(self, capability: ModuleType) -> None:
        self._capability = capability
        self._var = capability.ContextVar("execution_context", default=None)

    def get_store(self) -> AsyncContext | None:
        return self._var.get()

    def run(self, store: AsyncContext, fn: Callable[[], R]) -> R:
        context = self._capability.copy_context()
        context.run(self._var.set, store)
        result = context.run(fn)
        if inspect.iscoroutine(result):
            # The coroutine body only starts once awaited, possibly from a
            # different context; keep every step of it inside ours.
            return _run_in_context(result, context)  # type: ignore[return-value]
        return result

    @contextmanager
    def scope(self, store: AsyncContext) -> Iterator[AsyncContext]:
        """Install `store` for the body of a `with` block."""
        token = self._var.set(store)
        try:
            yield store
        finally:
            self._var.reset(token)


class DegradedCarrier:
    """Carrier used when context-local storage is unavailable. Propagates nothing."""

    is_native = False

    def get_store(self) -> AsyncContext | None:
        return None

    def run(self, store: AsyncContext, fn: Callable[[], R]) -> R:
        return fn()

    @contextmanager
    def scope(self, store: AsyncContext) -> Iterator[AsyncContext]:
        yield store
