"""Exception taxonomy for vault membership discovery."""

from __future__ import annotations

from typing import Mapping, Optional


class NestFiError(Exception):
    """Base class for every error raised by the nestfi package."""


class InvalidAddressInput(NestFiError, ValueError):
    """Raised when a caller-supplied address fails format validation."""

    def __init__(self, value: object, label: str = "address", reason: str = "invalid format"):
        super().__init__(f"Invalid {label} {value!r}: {reason}")
        self.value = value
        self.label = label
        self.reason = reason


class SourceUnavailable(NestFiError):
    """One source adapter failed or timed out."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class AllSourcesUnavailable(NestFiError):
    """Every source adapter failed during a reconciliation pass."""

    def __init__(self, failures: Optional[Mapping[str, str]] = None):
        self.failures = dict(failures or {})
        detail = ", ".join(f"{name}: {reason}" for name, reason in sorted(self.failures.items()))
        message = "All membership sources unavailable"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class MalformedRecord(NestFiError, ValueError):
    """A source returned a record missing its identity fields."""


class RpcError(NestFiError):
    """JSON-RPC transport failure or node-side error."""

    def __init__(self, message: str, method: str = ""):
        super().__init__(message)
        self.method = method
        self.message = message

    @property
    def is_block_range_error(self) -> bool:
        text = self.message.lower()
        # Node wording varies: "block range too large", "query returned more than 10000 results"
        if "block range" in text or "range too large" in text:
            return True
        return "more than" in text and "results" in text


class ContractReadError(RpcError):
    """A single contract view call could not be completed or decoded."""

    def __init__(self, contract: str, function: str, reason: str):
        super().__init__(f"{function} on {contract}: {reason}", method="eth_call")
        self.contract = contract
        self.function = function
        self.reason = reason


class ConfigLoadError(NestFiError, ValueError):
    """Raised when config loading or parsing fails."""
