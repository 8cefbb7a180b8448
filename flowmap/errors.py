"""
Error types raised by the explorer core.

Transient ledger failures are retried by the explorer; address resolution
failures surface to whoever asked for the address; configuration errors fail
fast instead of being coerced into degenerate values.
"""

from __future__ import annotations


class FlowmapError(Exception):
    """Base class for every error raised by flowmap."""


class LedgerUnavailableError(FlowmapError):
    """A ledger call failed in a way that may succeed if retried."""


class AddressResolutionError(FlowmapError):
    """The address string could not be turned into a script."""

    def __init__(self, address: str, reason: str = "") -> None:
        self.address = address
        self.reason = reason
        msg = f"Cannot resolve address {address!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ConfigError(FlowmapError, ValueError):
    """A tuning value (distance, page limit, ...) is not usable."""


class UnknownNodeError(FlowmapError, KeyError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(node_id)

    def __str__(self) -> str:
        return f"Node {self.node_id!r} is not in the graph"


class RetryExhaustedError(FlowmapError):
    """A unit of work kept failing after the whole retry budget was spent."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempt(s): {last_error}")
