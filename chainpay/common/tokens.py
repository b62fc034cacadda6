"""Token registry: logical symbol -> on-chain token contract address."""

from types import MappingProxyType

from web3 import Web3

from chainpay.common.errors import UnknownTokenError


class TokenRegistry:
    """Read-only, process-wide symbol map built once from configuration."""

    def __init__(self, addresses: dict[str, str]) -> None:
        self._addresses = MappingProxyType(
            {symbol.upper(): Web3.to_checksum_address(address) for symbol, address in addresses.items()}
        )

    def resolve(self, symbol: str) -> str:
        try:
            return self._addresses[symbol.upper()]
        except KeyError:
            raise UnknownTokenError(symbol) from None

    def is_known(self, symbol: str) -> bool:
        return symbol.upper() in self._addresses

    def symbols(self) -> list[str]:
        return sorted(self._addresses)
