"""Exception hierarchy shared by every layer of the tracker."""


class PortfolioTrackerError(Exception):
    """Base class for all tracker errors."""


class ConfigurationError(PortfolioTrackerError):
    """Raised when settings or packaged chain data cannot be loaded."""


class InvalidAddressError(PortfolioTrackerError, ValueError):
    """
    Raised when a wallet or contract address is malformed for a chain.

    Validation errors are caller mistakes: they are raised before any
    network call and are never retried.

    Parameters
    ----------
    address : str
        The rejected address
    chain : str | None
        Chain id the address was validated against, if any

    """

    def __init__(self, address: str, chain: str | None = None) -> None:
        self.address = address
        self.chain = chain
        where = f" for {chain}" if chain else ""
        super().__init__(f"Invalid address{where}: {address!r}")


class ProviderError(PortfolioTrackerError):
    """
    Upstream or network failure of an external data provider.

    Parameters
    ----------
    message : str
        Human readable description
    resource : str
        Rate-limited resource name of the provider (e.g. 'ethereum-rpc')
    operation : str
        Operation that failed (e.g. 'native_balance')
    wallet_address : str | None
        Wallet involved, if any
    contract_address : str | None
        Token or pool contract involved, if any

    """

    def __init__(
        self,
        message: str,
        *,
        resource: str,
        operation: str,
        wallet_address: str | None = None,
        contract_address: str | None = None,
    ) -> None:
        super().__init__(message)
        self.resource = resource
        self.operation = operation
        self.wallet_address = wallet_address
        self.contract_address = contract_address


class ChainError(ProviderError):
    """Provider error raised by a chain provider, tagged with its chain."""

    def __init__(
        self,
        message: str,
        *,
        chain: str,
        resource: str,
        operation: str,
        wallet_address: str | None = None,
        contract_address: str | None = None,
    ) -> None:
        super().__init__(
            message,
            resource=resource,
            operation=operation,
            wallet_address=wallet_address,
            contract_address=contract_address,
        )
        self.chain = chain

    def __str__(self) -> str:
        parts = [f"chain={self.chain}", f"operation={self.operation}"]
        if self.wallet_address:
            parts.append(f"wallet={self.wallet_address}")
        if self.contract_address:
            parts.append(f"contract={self.contract_address}")
        return f"{self.args[0]} ({', '.join(parts)})"


class PriceOracleError(ProviderError):
    """Provider error raised by the price oracle adapter."""
