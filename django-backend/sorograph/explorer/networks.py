"""
Stellar network selection.

A :class:`NetworkConfig` is resolved per request and passed to every client
and resolver call; nothing in the explorer keeps a "current network".
"""
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from stellar_sdk import Network

TESTNET = "testnet"
MAINNET = "mainnet"
FUTURENET = "futurenet"

_PASSPHRASES = {
    TESTNET: Network.TESTNET_NETWORK_PASSPHRASE,
    MAINNET: Network.PUBLIC_NETWORK_PASSPHRASE,
    FUTURENET: "Test SDF Future Network ; October 2022",
}


class UnknownNetwork(ValueError):
    pass


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    horizon_url: str
    rpc_url: Optional[str]
    passphrase: str


def available_networks() -> list[str]:
    return list(getattr(settings, "STELLAR_NETWORKS", {}))


def default_network_name() -> str:
    return getattr(settings, "STELLAR_DEFAULT_NETWORK", TESTNET)


def get_network(name: Optional[str] = None) -> NetworkConfig:
    """Build the config for *name* (or the default network) from settings."""
    name = (name or default_network_name()).lower()
    networks = getattr(settings, "STELLAR_NETWORKS", {})
    try:
        conf = networks[name]
    except KeyError:
        raise UnknownNetwork(f"Unknown network '{name}'") from None
    rpc_url = conf.get("RPC_URL") or None
    if not getattr(settings, "EXPLORER_RPC_ENABLED", True):
        rpc_url = None
    return NetworkConfig(
        name=name,
        horizon_url=conf["HORIZON_URL"],
        rpc_url=rpc_url,
        passphrase=conf.get("PASSPHRASE") or _PASSPHRASES.get(name, Network.TESTNET_NETWORK_PASSPHRASE),
    )
