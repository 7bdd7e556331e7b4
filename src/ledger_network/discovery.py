"""
Address-book discovery from a mirror node's REST API.

The mirror node publishes the current consensus node set at
``/api/v1/network/nodes``, paginated through ``links.next``. The result is an
``address -> account ID`` map that ``Network.set_network`` accepts directly.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin

import aiohttp

from .errors import DiscoveryError
from .ids import AccountId

logger = logging.getLogger(__name__)

NODES_PATH = "/api/v1/network/nodes"
DEFAULT_PAGE_LIMIT = 25
DEFAULT_REQUEST_TIMEOUT = 10.0


class MirrorRestClient:
    """Reads the consensus address book from a mirror node.

    Args:
        base_url: Mirror REST root, e.g. ``https://mainnet.mirrornode.example``
        timeout: Per-page request timeout in seconds
        page_limit: Node entries requested per page
        max_pages: Stop following pagination after this many pages
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        max_pages: int = 100,
    ) -> None:
        if "://" not in base_url:
            base_url = f"https://{base_url}"
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_limit = page_limit
        self.max_pages = max_pages

    async def _get_page(self, session: aiohttp.ClientSession, url: str) -> dict[str, Any]:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
            if resp.status != 200:
                raise DiscoveryError(f"Mirror node returned HTTP {resp.status} for {url}")
            return await resp.json()

    async def fetch_nodes(self) -> list[dict[str, Any]]:
        """Every node entry of the address book, across all pages."""
        url = f"{self.base_url}{NODES_PATH}?limit={self.page_limit}"
        nodes: list[dict[str, Any]] = []
        pages = 0
        try:
            async with aiohttp.ClientSession() as session:
                while url and pages < self.max_pages:
                    data = await self._get_page(session, url)
                    nodes.extend(data.get("nodes", []))
                    pages += 1
                    next_link = (data.get("links") or {}).get("next")
                    url = urljoin(self.base_url + "/", next_link) if next_link else None
        except aiohttp.ClientError as e:
            raise DiscoveryError(f"Failed to fetch address book from {self.base_url}: {e}") from e

        logger.debug("Fetched %d node entries in %d page(s) from %s", len(nodes), pages, self.base_url)
        return nodes

    @staticmethod
    def parse_nodes(nodes: list[dict[str, Any]]) -> dict[str, AccountId]:
        """Map every advertised endpoint to its node's account ID.

        Entries without an account ID or usable endpoint are skipped.
        """
        network: dict[str, AccountId] = {}
        for entry in nodes:
            account_text = entry.get("node_account_id")
            if not account_text:
                continue
            try:
                account_id = AccountId.from_string(account_text)
            except ValueError:
                logger.warning("Skipping node with malformed account ID %r", account_text)
                continue

            for endpoint in entry.get("service_endpoints") or []:
                host = endpoint.get("domain_name") or endpoint.get("ip_address_v4")
                port = endpoint.get("port")
                if not host or not port:
                    continue
                network[f"{host}:{port}"] = account_id
        return network

    async def fetch_network(self) -> dict[str, AccountId]:
        """Current ``address -> account ID`` map of the consensus network.

        Raises:
            DiscoveryError: If the mirror node is unreachable or returns no usable nodes
        """
        network = self.parse_nodes(await self.fetch_nodes())
        if not network:
            raise DiscoveryError(f"Mirror node {self.base_url} returned no usable node endpoints")
        return network
