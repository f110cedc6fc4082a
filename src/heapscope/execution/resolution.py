"""Helpers to resolve registered transports from identifiers."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .. import inspector  # noqa: F401  (registers the bundled transports)
from ..core.errors import ConfigurationError, ProtocolError
from ..core.registry import TransportRegistry
from ..core.transport import InspectorTransport


def resolve_transport(
    transport_id: str, params: Optional[Mapping[str, Any]] = None
) -> InspectorTransport:
    try:
        transport_cls = TransportRegistry.get(transport_id)
    except KeyError as exc:
        raise ConfigurationError(f"Unknown transport '{transport_id}'") from exc

    try:
        return transport_cls(**dict(params or {}))
    except TypeError as exc:
        raise ConfigurationError(
            f"Failed to instantiate transport '{transport_id}' with params {params!r}: {exc}"
        ) from exc


def ensure_transport_available(
    transport_id: str, params: Optional[Mapping[str, Any]] = None
) -> None:
    try:
        transport_cls = TransportRegistry.get(transport_id)
    except KeyError as exc:
        raise ConfigurationError(f"Unknown transport '{transport_id}'") from exc

    if not transport_cls.is_available(**dict(params or {})):
        raise ProtocolError(f"Transport '{transport_cls.transport_name}' is unavailable")


__all__ = ["ensure_transport_available", "resolve_transport"]
