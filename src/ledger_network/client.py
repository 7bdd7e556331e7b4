"""
Client: the configuration, networks and operator shared by every request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from .config import ClientConfig
from .crypto import PrivateKey, Signer
from .discovery import MirrorRestClient
from .errors import IllegalStateError, LedgerError
from .ids import AccountId
from .network import MirrorNetwork, Network

logger = logging.getLogger(__name__)


class Client:
    """Entry point holding consensus and mirror networks plus the operator.

    Usage:
        client = Client.for_network({"127.0.0.1:50211": "0.0.3"})
        client.set_operator(AccountId(0, 0, 2), PrivateKey.generate())
        response = await transaction.execute(client)
        await client.close()
    """

    def __init__(
        self,
        network: Network | None = None,
        mirror_network: MirrorNetwork | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.network = network if network is not None else Network(config=self.config)
        self.mirror_network = mirror_network if mirror_network is not None else MirrorNetwork(config=self.config)
        self._operator_account_id: AccountId | None = None
        self._operator_signer: Signer | None = None
        self._mirror_rest: MirrorRestClient | None = None
        self._update_task: asyncio.Task | None = None

    @classmethod
    def for_network(
        cls,
        network: Mapping[str, AccountId | str],
        mirror_addresses: Iterable[str] = (),
        config: ClientConfig | None = None,
    ) -> Client:
        config = config or ClientConfig()
        return cls(Network(network, config), MirrorNetwork(mirror_addresses, config), config)

    @classmethod
    def for_mirror_network(cls, mirror_addresses: Iterable[str], config: ClientConfig | None = None) -> Client:
        """Client with only a mirror network; call ``update_network`` to fill in consensus nodes."""
        config = config or ClientConfig()
        return cls(Network(config=config), MirrorNetwork(mirror_addresses, config), config)

    # ------------------------------------------------------------------
    # Operator
    # ------------------------------------------------------------------

    def set_operator(self, account_id: AccountId | str, signer: Signer | str):
        """Payer account and key used to generate IDs and sign transactions."""
        if isinstance(account_id, str):
            account_id = AccountId.from_string(account_id)
        if isinstance(signer, str):
            signer = PrivateKey.from_string(signer)
        self._operator_account_id = account_id
        self._operator_signer = signer
        return self

    @property
    def operator_account_id(self) -> AccountId | None:
        return self._operator_account_id

    @property
    def operator_signer(self) -> Signer | None:
        return self._operator_signer

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def set_mirror_rest_url(self, base_url: str):
        self._mirror_rest = MirrorRestClient(base_url, timeout=self.config.connect_timeout)
        return self

    async def update_network(self) -> dict[str, AccountId]:
        """Refresh consensus nodes from the mirror node's address book.

        Raises:
            IllegalStateError: If no mirror REST endpoint is known
            DiscoveryError: If the address book cannot be fetched
        """
        rest = self._mirror_rest
        if rest is None:
            addresses = self.mirror_network.network
            if not addresses:
                raise IllegalStateError("No mirror node to fetch the address book from")
            host = addresses[0].rpartition(":")[0]
            rest = MirrorRestClient(host, timeout=self.config.connect_timeout)

        network = await rest.fetch_network()
        await self.network.set_network(network)
        logger.info("Updated network to %d node endpoint(s)", len(network))
        return network

    def start_network_updates(self, period: float | None = None) -> asyncio.Task:
        """Refresh the address book every ``period`` seconds until closed."""
        period = self.config.network_update_period if period is None else period
        if self._update_task is None or self._update_task.done():
            self._update_task = asyncio.get_running_loop().create_task(self._update_loop(period))
        return self._update_task

    async def _update_loop(self, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            try:
                await self.update_network()
            except LedgerError as e:
                logger.warning("Network update failed, keeping current nodes: %s", e)

    async def close(self) -> None:
        """Close every channel to consensus and mirror nodes."""
        if self._update_task is not None:
            self._update_task.cancel()
            self._update_task = None
        await self.network.close()
        await self.mirror_network.close()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
