"""Async execution-context carrier.

Recover the execution context of the logical caller from anywhere inside an
async call chain, without passing it through every function signature.
"""

from .carrier import (
    SLOT_KEY,
    CarrierSlot,
    acquire_carrier,
    build_carrier,
    carrier_healthcheck,
    current_context_nowait,
    get_carrier_slot,
    get_current_context,
    require_current_context,
    run_with_context,
)
from .errors import ContextUnavailableError, ExecutionContextError
from .handles import AsyncContext, CarrierHandle, DegradedCarrier, NativeCarrier

__all__ = [
    # Carrier
    "SLOT_KEY",
    "CarrierSlot",
    "acquire_carrier",
    "build_carrier",
    "carrier_healthcheck",
    "current_context_nowait",
    "get_carrier_slot",
    "get_current_context",
    "require_current_context",
    "run_with_context",
    # Handles
    "AsyncContext",
    "CarrierHandle",
    "DegradedCarrier",
    "NativeCarrier",
    # Errors
    "ContextUnavailableError",
    "ExecutionContextError",
]
