"""Contrato del transporte HTTP hacia la API remota."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from core.domain.models import TransportRequest, TransportResponse


@runtime_checkable
class Transport(Protocol):
    """Performs one HTTP call.

    Returns the status, parsed body and headers for any HTTP status; raises
    only on network-level failures (connection refused, timeout, ...). Binary
    responses come back as base64 text.
    """

    async def send(self, request: TransportRequest) -> TransportResponse:
        ...
