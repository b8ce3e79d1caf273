"""JSON-RPC provider wrapper using Ape's network management."""

import logging
import threading
from typing import Any

from ape import networks

logger = logging.getLogger(__name__)


def mask_secret(uri: str | None) -> str:
    """
    Hide the API key part of an RPC URL for logging.

    Parameters
    ----------
    uri : str | None
        RPC endpoint URL

    Returns
    -------
    str
        URL with the last path segment masked

    """
    if not uri:
        return "<unknown>"
    head, sep, tail = uri.rstrip("/").rpartition("/")
    if sep and len(tail) > 6 and head not in ("http:/", "https:/"):
        return f"{head}/****{tail[-4:]}"
    return uri


class ApeRPCProvider:
    """
    RPC provider using Ape's network management system.

    Ape picks the node for a network choice from its configuration and
    environment (e.g., ``WEB3_INFURA_PROJECT_ID``).

    Parameters
    ----------
    chain : str
        Chain id (e.g., 'ethereum', 'polygon')
    network_choice : str
        Ape network choice (default: '<chain>:mainnet')

    """

    def __init__(self, chain: str, network_choice: str | None = None) -> None:
        self.chain = chain
        self.network_choice = network_choice or f"{chain}:mainnet"
        self._network_context: Any = None
        self._provider: Any = None
        self._connect_lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._provider is not None

    def connect(self) -> None:
        """Connect to the network using Ape's network management. No-op when connected."""
        with self._connect_lock:
            if self._provider is None:
                self._connect()

    def _connect(self) -> None:
        try:
            self._network_context = networks.parse_network_choice(self.network_choice)
            self._provider = self._network_context.__enter__()
        except Exception as e:
            error_msg = f"Failed to connect to {self.network_choice}: {e}"
            raise RuntimeError(error_msg) from e

        logger.info(
            "Connected to %s via %s",
            self.network_choice,
            mask_secret(getattr(self._provider, "http_uri", None)),
        )

    def disconnect(self) -> None:
        """Disconnect from the network."""
        if self._network_context:
            try:
                self._network_context.__exit__(None, None, None)
            except Exception as e:
                logger.debug("Error during network context cleanup: %s", e)
            self._network_context = None
        self._provider = None

    def make_request(self, method: str, params: list[Any]) -> Any:
        """
        Send one RPC request, connecting first if needed.

        Retries are left to the caller so each attempt can take its own
        rate-limiter slot.

        Parameters
        ----------
        method : str
            RPC method name (e.g., 'eth_call', 'eth_getBalance')
        params : list[Any]
            Method parameters

        Returns
        -------
        Any
            RPC response

        Raises
        ------
        RuntimeError
            If the network cannot be connected
        Exception
            Whatever the node raises

        """
        if not self._provider:
            self.connect()
        return self._provider.make_request(method, params)

    def __enter__(self) -> "ApeRPCProvider":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.disconnect()
