class CryptofolioError(Exception):
    """Base class for errors surfaced by the portfolio core."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidAmount(CryptofolioError):
    status_code = 400


class InvalidSymbol(CryptofolioError):
    status_code = 400


class InsufficientBalance(CryptofolioError):
    status_code = 400


class HoldingNotFound(InsufficientBalance):
    status_code = 404


class StoreUnavailable(CryptofolioError):
    status_code = 503


class PriceSourceError(CryptofolioError):
    status_code = 502


class QuoteUnavailable(CryptofolioError):
    """Raised while resolving one symbol; always absorbed by the price join."""
