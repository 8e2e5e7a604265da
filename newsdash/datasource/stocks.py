"""
Stock quote endpoints.
"""

from urllib.parse import quote

from newsdash.datasource.base import BaseDataSource
from newsdash.models import StockQuote
from newsdash.services.errors import ErrorKind, NormalizedError, ServiceError

STOCKS_PATH = "/api/v1/stocks"


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class StockSource(BaseDataSource):
    async def quote(self, symbol: str) -> StockQuote:
        symbol = normalize_symbol(symbol)
        if not symbol:
            raise ServiceError(
                "Symbol is required",
                service_id=self.service_id,
                error=NormalizedError(
                    code=ErrorKind.INVALID_REQUEST, message="Symbol is required"
                ),
            )
        return await self._get(f"{STOCKS_PATH}/quote/{quote(symbol)}", StockQuote)

    async def quotes(self, symbols: list[str]) -> dict[str, StockQuote]:
        """Batch quote lookup keyed by symbol."""
        cleaned = [s for s in (normalize_symbol(s) for s in symbols) if s]
        if not cleaned:
            raise ServiceError(
                "Symbols are required",
                service_id=self.service_id,
                error=NormalizedError(
                    code=ErrorKind.INVALID_REQUEST, message="Symbols are required"
                ),
            )
        return await self._get(
            f"{STOCKS_PATH}/quotes",
            dict[str, StockQuote],
            {"symbols": cleaned},
        )
