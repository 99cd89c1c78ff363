"""Protocol conformance of the concrete collaborators and test fakes."""

from __future__ import annotations

import pytest

from medvandrerne_sync.gateway import HttpDataGateway
from medvandrerne_sync.protocols import GatewayProtocol, NotificationBackendProtocol, StoreProtocol


def test_sqlite_store_satisfies_store_protocol(store):
    assert isinstance(store, StoreProtocol)


@pytest.mark.asyncio
async def test_http_gateway_satisfies_gateway_protocol():
    gateway = HttpDataGateway("https://example.invalid/api")
    try:
        assert isinstance(gateway, GatewayProtocol)
    finally:
        await gateway.aclose()


def test_fakes_satisfy_protocols(gateway, backend):
    assert isinstance(gateway, GatewayProtocol)
    assert isinstance(backend, NotificationBackendProtocol)
