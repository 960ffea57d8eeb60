"""
Reserved-name checks against the trading symbol list.

A template may not be named after a symbol (or something confusingly close
to one), because symbol names are used by the system's own detail templates.
"""

import logging
import re
import time
from typing import Iterable, List, Optional

import httpx

logger = logging.getLogger(__name__)

_AFFIX_PREFIX = re.compile(r"^(TEMPLATE|TPL|LAYOUT)[-_\s]*", re.IGNORECASE)
_AFFIX_SUFFIX = re.compile(r"[-_\s]*(TEMPLATE|TPL|LAYOUT)$", re.IGNORECASE)


def _strip_exchange(symbol: str) -> str:
    """'NASDAQ:AAPL' -> 'AAPL'."""
    parts = symbol.split(":")
    return parts[1] if len(parts) > 1 else symbol


def is_name_similar_to_symbol(name: str, symbols: Iterable[str]) -> bool:
    normalized = name.upper().strip()
    without_exchange = _strip_exchange(normalized)
    cleaned = _AFFIX_SUFFIX.sub("", _AFFIX_PREFIX.sub("", normalized))

    for symbol in symbols:
        sym = symbol.upper()
        sym_without_exchange = _strip_exchange(sym)
        if normalized == sym or without_exchange == sym_without_exchange:
            return True
        if cleaned == sym or _strip_exchange(cleaned) == sym_without_exchange:
            return True
    return False


class SymbolValidator:
    """Fetches the symbol list once per ``cache_seconds`` and checks names against it."""

    def __init__(
        self,
        symbols_url: str,
        modules: List[str],
        cache_seconds: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.symbols_url = symbols_url
        self.modules = modules
        self.cache_seconds = cache_seconds
        self._client = client
        self._symbols: Optional[List[str]] = None
        self._fetched_at: float = 0.0

    async def _fetch_module(self, client: httpx.AsyncClient, module: str) -> List[str]:
        try:
            response = await client.post(self.symbols_url, json={"Module": module})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching symbols for module {module}: {e}")
            return []

        if data.get("status") != "success" or not isinstance(data.get("data"), list):
            return []
        return [str(item.get("Symbol")).upper() for item in data["data"] if item.get("Symbol")]

    async def fetch_all(self) -> List[str]:
        """Fetch symbols for every module; a failing module contributes nothing."""
        symbols: List[str] = []
        if self._client is not None:
            for module in self.modules:
                symbols.extend(await self._fetch_module(self._client, module))
        else:
            async with httpx.AsyncClient() as client:
                for module in self.modules:
                    symbols.extend(await self._fetch_module(client, module))
        return list(dict.fromkeys(symbols))

    async def get_symbols(self) -> List[str]:
        now = time.monotonic()
        if self._symbols is not None and now - self._fetched_at < self.cache_seconds:
            return self._symbols
        self._symbols = await self.fetch_all()
        self._fetched_at = now
        logger.debug(f"Loaded {len(self._symbols)} symbols")
        return self._symbols

    def clear(self):
        self._symbols = None
        self._fetched_at = 0.0

    async def is_reserved(self, name: str) -> bool:
        return is_name_similar_to_symbol(name, await self.get_symbols())
