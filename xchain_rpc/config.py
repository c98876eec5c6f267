"""
Network configuration for xchain-rpc.

Networks are described in the packaged ``networks.json``; RPC URLs can be
overridden per call or through ``<NETWORK>_RPC_URL`` environment variables.
"""
import importlib.resources
import json
import logging
import os
import urllib.parse
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3

from .gas import DEFAULT_CALLBACK_GAS, DEFAULT_CALL_GAS, ResourceAccountant

# Configure logger
logger = logging.getLogger(__name__)


class NetworkConfig:
    """Access to the packaged network definitions."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load every network definition, caching the result.

        Returns:
            Mapping of network name to its configuration
        """
        if cls._networks_cache is not None:
            return cls._networks_cache
        resource = importlib.resources.files("xchain_rpc").joinpath("networks.json")
        with resource.open("r", encoding="utf-8") as f:
            cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get one network's configuration.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Network '{network}' not found. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        Resolve the RPC URL of a network.

        Precedence: ``override``, then ``<NETWORK>_RPC_URL``, then the file.
        """
        if override:
            return override
        env_var = f"{network.upper().replace('-', '_')}_RPC_URL"
        env_url = os.environ.get(env_var)
        if env_url:
            logger.debug(f"Using RPC URL from {env_var}")
            return env_url
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return int(cls.get_network(network)["chainId"])

    @classmethod
    def get_proxy_address(cls, network: str) -> Optional[str]:
        return cls.get_network(network).get("rpcProxy")

    @classmethod
    def get_server_address(cls, network: str) -> Optional[str]:
        return cls.get_network(network).get("rpcServer")

    @classmethod
    def get_confirmations(cls, network: str) -> int:
        return int(cls.get_network(network).get("confirmations", 0))

    @classmethod
    def get_accountant(cls, network: str, callback: bool = False) -> ResourceAccountant:
        """
        Budget policy configured for a network.

        Args:
            network: Network name
            callback: Use the callback budget instead of the remote call budget
        """
        config = cls.get_network(network)
        if callback:
            return ResourceAccountant(int(config.get("callbackGas", DEFAULT_CALLBACK_GAS)))
        return ResourceAccountant(int(config.get("callGas", DEFAULT_CALL_GAS)))


def validate_rpc_url(rpc_url: str) -> None:
    """
    Raises:
        ValueError: If the URL is neither https nor a local address
    """
    parsed = urllib.parse.urlparse(rpc_url)
    host = parsed.netloc.split(":")[0]
    if parsed.scheme != "https" and host not in ("localhost", "127.0.0.1"):
        raise ValueError(f"rpc_url must use https:// for security (got: {parsed.scheme}://)")


def make_web3(rpc_url: str, retry_count: int = 3, timeout: int = 30) -> Web3:
    """
    Build a Web3 instance over a retrying HTTP session.

    Args:
        rpc_url: JSON-RPC endpoint
        retry_count: Number of retries for failed requests
        timeout: Request timeout in seconds

    Returns:
        Web3 instance
    """
    validate_rpc_url(rpc_url)
    session = requests.Session()
    retries = Retry(
        total=retry_count,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
        connect=retry_count,
        read=retry_count,
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    provider = Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}, session=session)
    return Web3(provider)
