"""
Tests for the client.

Tests cover:
- Construction from address maps
- Operator configuration
- Address-book refresh from the mirror node
- Shutdown
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from ledger_network.client import Client
from ledger_network.config import ClientConfig
from ledger_network.crypto import PrivateKey
from ledger_network.discovery import MirrorRestClient
from ledger_network.errors import DiscoveryError, IllegalStateError
from ledger_network.ids import AccountId

# =============================================================================
# CONSTRUCTION
# =============================================================================


class TestConstruction:
    """Tests for building clients."""

    def test_for_network(self) -> None:
        client = Client.for_network(
            {"10.0.0.1:50211": "0.0.3", "10.0.0.2:50211": AccountId(0, 0, 4)},
            mirror_addresses=["mirror.example:443"],
        )
        assert client.network.network == {
            "10.0.0.1:50211": AccountId(0, 0, 3),
            "10.0.0.2:50211": AccountId(0, 0, 4),
        }
        assert client.mirror_network.network == ["mirror.example:443"]

    def test_config_is_shared(self) -> None:
        config = ClientConfig(max_attempts=3)
        client = Client.for_network({"10.0.0.1:50211": "0.0.3"}, config=config)
        assert client.config is config
        assert client.network.config is config
        assert client.mirror_network.config is config

    def test_for_mirror_network(self) -> None:
        client = Client.for_mirror_network(["mirror.example:443"])
        assert client.network.nodes == []
        assert len(client.mirror_network.nodes) == 1

    def test_set_operator_from_strings(self) -> None:
        key = PrivateKey.generate()
        client = Client().set_operator("0.0.1001", key.to_bytes().hex())

        assert client.operator_account_id == AccountId(0, 0, 1001)
        assert client.operator_signer.public_key_bytes() == key.public_key_bytes()

    def test_no_operator_by_default(self) -> None:
        client = Client()
        assert client.operator_account_id is None
        assert client.operator_signer is None


# =============================================================================
# NETWORK UPDATES
# =============================================================================


class TestUpdateNetwork:
    """Tests for refreshing consensus nodes."""

    @pytest.mark.asyncio
    async def test_update_from_mirror_host(self) -> None:
        client = Client.for_mirror_network(["mirror.example:443"])
        discovered = {"10.0.0.7:50211": AccountId(0, 0, 7)}

        with patch.object(MirrorRestClient, "fetch_network", new_callable=AsyncMock, return_value=discovered) as fetch:
            network = await client.update_network()

        fetch.assert_awaited_once()
        assert network == discovered
        assert client.network.network == discovered

    @pytest.mark.asyncio
    async def test_explicit_rest_url(self) -> None:
        client = Client.for_mirror_network(["mirror.example:443"]).set_mirror_rest_url("http://localhost:5551")
        assert client._mirror_rest.base_url == "http://localhost:5551"

    @pytest.mark.asyncio
    async def test_update_without_mirror(self) -> None:
        with pytest.raises(IllegalStateError):
            await Client().update_network()

    @pytest.mark.asyncio
    async def test_failed_update_keeps_nodes(self) -> None:
        client = Client.for_network({"10.0.0.1:50211": "0.0.3"}, mirror_addresses=["mirror.example:443"])

        with patch.object(MirrorRestClient, "fetch_network", new_callable=AsyncMock, side_effect=DiscoveryError("down")):
            with pytest.raises(DiscoveryError):
                await client.update_network()

        assert client.network.network == {"10.0.0.1:50211": AccountId(0, 0, 3)}

    @pytest.mark.asyncio
    async def test_periodic_updates_survive_failures(self) -> None:
        client = Client.for_mirror_network(["mirror.example:443"])
        calls = []

        async def fake_update():
            calls.append(1)
            raise DiscoveryError("down")

        client.update_network = fake_update
        task = client.start_network_updates(period=0)
        for _ in range(10):
            await asyncio.sleep(0)
        assert len(calls) >= 2
        assert not task.done()

        await client.close()
        await asyncio.wait([task])
        assert task.cancelled()


# =============================================================================
# SHUTDOWN
# =============================================================================


class TestClose:
    @pytest.mark.asyncio
    async def test_close_closes_both_networks(self) -> None:
        client = Client.for_network({"10.0.0.1:50211": "0.0.3"}, mirror_addresses=["mirror.example:443"])
        client.network.close = AsyncMock()
        client.mirror_network.close = AsyncMock()

        await client.close()

        client.network.close.assert_awaited_once()
        client.mirror_network.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_async_context_manager(self) -> None:
        client = Client.for_network({"10.0.0.1:50211": "0.0.3"})
        client.network.close = AsyncMock()
        client.mirror_network.close = AsyncMock()

        async with client as entered:
            assert entered is client

        client.network.close.assert_awaited_once()
