"""
Signing credential resolution.

In local mode each chain's private key is read from the secret file named in
the configuration. Otherwise the key is generated inside the ROFL runtime by
the application daemon, which is reached over its unix socket (or an HTTP URL
when one is given).
"""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from ..errors import ConfigurationError

if TYPE_CHECKING:
    from ..config import RelayerConfig

logger = logging.getLogger(__name__)


class KeyProvider:
    """Resolves the private key used to sign transactions on each chain."""

    ROFL_SOCKET_PATH: str = "/run/rofl-appd.sock"
    KEY_GENERATE_PATH: str = "/rofl/v1/keys/generate"

    def __init__(self, config: "RelayerConfig", appd_url: str = '') -> None:
        """
        Args:
            config: Relayer configuration (mode and secret file)
            appd_url: ROFL daemon URL or socket path; defaults to the standard socket
        """
        self.config = config
        self.appd_url = appd_url

    def _client(self) -> tuple[httpx.AsyncClient, str]:
        if self.appd_url.startswith('http'):
            return httpx.AsyncClient(), self.appd_url
        socket_path = self.appd_url or self.ROFL_SOCKET_PATH
        logger.debug(f"Using unix domain socket: {socket_path}")
        return httpx.AsyncClient(transport=httpx.AsyncHTTPTransport(uds=socket_path)), "http://localhost"

    async def fetch_rofl_key(self, key_id: str) -> str:
        """
        Ask the ROFL daemon for a secp256k1 key.

        Args:
            key_id: Identifier of the key; the same id always yields the same key

        Returns:
            The private key as a hex string

        Raises:
            ConfigurationError: If the daemon cannot provide the key
        """
        client, base_url = self._client()
        payload: dict[str, str] = {"key_id": key_id, "kind": "secp256k1"}

        try:
            async with client as session:
                response = await session.post(base_url + self.KEY_GENERATE_PATH, json=payload, timeout=30.0)
                response.raise_for_status()
                body: dict[str, Any] = response.json()
        except httpx.HTTPError as e:
            raise ConfigurationError(f"ROFL key generation for {key_id} failed: {e}") from e

        if not body.get("key"):
            raise ConfigurationError(f"ROFL daemon returned no key for {key_id}")
        return body["key"]

    async def get_key(self, chain_name: str) -> str:
        """Return the signing key for a chain."""
        if self.config.local_mode:
            logger.debug(f"Loading {chain_name} key from secret file (LOCAL MODE)")
            return self.config.load_secret(chain_name)

        logger.debug(f"Fetching {chain_name} key from ROFL...")
        return await self.fetch_rofl_key(f"{chain_name}-relayer")
