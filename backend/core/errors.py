"""
Error taxonomy for the network analysis engine.

Fetch-level failures (GatewayError and subclasses) are absorbed by the
FetchOrchestrator and recorded in the result manifest. They only surface as
EntityUnreachable when every requested record kind failed for the seed.
Builder invariant violations (DanglingEdge) always propagate.
"""
from typing import Optional


class NetworkAnalysisError(Exception):
    """Base class for every error raised by the engine."""


# ============================================
# Registry Gateway failures
# ============================================

class GatewayError(NetworkAnalysisError):
    """A single registry call failed."""

    reason = "unavailable"
    retrievable = True

    def __init__(self, entity_id: str, kind: Optional[str] = None, detail: Optional[str] = None):
        self.entity_id = entity_id
        self.kind = kind
        self.detail = detail
        message = f"{self.reason}: {kind or 'record'} for {entity_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class NotFound(GatewayError):
    reason = "not_found"
    retrievable = False


class RateLimited(GatewayError):
    reason = "rate_limited"


class Unavailable(GatewayError):
    reason = "unavailable"


class GatewayTimeout(GatewayError):
    reason = "timeout"


# ============================================
# Orchestration / construction failures
# ============================================

class InvalidRecord(NetworkAnalysisError):
    """A raw gateway payload failed validation against its tagged variant."""

    reason = "invalid_record"

    def __init__(self, entity_id: str, kind: str, detail: str):
        self.entity_id = entity_id
        self.kind = kind
        self.detail = detail
        super().__init__(f"Invalid {kind} record for {entity_id}: {detail}")


class EntityUnreachable(NetworkAnalysisError):
    """Every requested record kind failed for an entity."""

    def __init__(self, entity_id: str, reasons: dict[str, str]):
        self.entity_id = entity_id
        self.reasons = reasons
        summary = ", ".join(f"{kind}={reason}" for kind, reason in sorted(reasons.items()))
        super().__init__(f"Entity {entity_id} unreachable: {summary}")

    @property
    def not_found(self) -> bool:
        """True when the registry positively reported the entity as missing."""
        return bool(self.reasons) and all(r == NotFound.reason for r in self.reasons.values())


class DanglingEdge(NetworkAnalysisError):
    """A relationship referenced a node id that is not in the graph."""

    def __init__(self, from_id: str, to_id: str, kind: str, missing: list[str]):
        self.from_id = from_id
        self.to_id = to_id
        self.kind = kind
        self.missing = missing
        super().__init__(
            f"Cannot add {kind} edge {from_id} -> {to_id}: missing node(s) {', '.join(missing)}"
        )


class UnsupportedEntityType(NetworkAnalysisError):
    """An analysis was requested for an entity type it cannot be seeded from."""

    def __init__(self, entity_type: str, analysis: str):
        self.entity_type = entity_type
        self.analysis = analysis
        super().__init__(f"{analysis} cannot be seeded from entity type '{entity_type}'")
