"""
Sales data source.

Polls the Moralis NFT trades API for the monitored ENS contracts.
"""

import asyncio
import logging
from typing import Optional, List, Dict, Any, Tuple

import aiohttp

from ..config import BotConfig
from ..core.exceptions import TransientFetchError
from ..core.interfaces import SaleEvent, SalesSource

logger = logging.getLogger(__name__)


class MoralisSalesSource(SalesSource):
    """
    Fetches ENS sales newer than a block cursor.

    Moralis pages newest first. When max_pages runs out before the range
    is exhausted, the reported cursor stays put and the next calls walk
    the remaining older blocks with `to_block`, so no trade between the
    cursor and the newest block is skipped. Once the gap is drained the
    cursor jumps to the newest block seen.

    Any network error, timeout or non-200 answer raises TransientFetchError.
    """

    def __init__(
        self,
        config: BotConfig,
        session: Optional[aiohttp.ClientSession] = None,
        max_pages: int = 5,
    ):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.max_pages = max_pages
        # contract -> (to_block still to drain, newest block seen)
        self._backfill: Dict[str, Tuple[int, int]] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if we own it."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _fetch_page(
        self,
        contract: str,
        from_block: Optional[int],
        to_block: Optional[int],
        page_cursor: Optional[str],
    ) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.config.moralis_base_url}/nft/{contract}/trades"
        params: Dict[str, Any] = {
            "chain": "eth",
            "limit": self.config.fetch_limit,
            "include_metadata": "true",
        }
        if from_block is not None:
            params["from_block"] = from_block
        if to_block is not None:
            params["to_block"] = to_block
        if page_cursor:
            params["cursor"] = page_cursor
        headers = {"X-API-Key": self.config.moralis_api_key, "Accept": "application/json"}

        try:
            async with session.get(url, params=params, headers=headers) as response:
                if response.status != 200:
                    body = await response.text()
                    raise TransientFetchError(
                        f"Moralis returned status {response.status} for {contract}: {body[:200]}"
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise TransientFetchError(f"Network error fetching trades for {contract}: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransientFetchError(f"Timeout fetching trades for {contract}") from e

        return data if isinstance(data, dict) else {}

    async def fetch_contract_sales(self, contract: str, cursor: int) -> Tuple[List[SaleEvent], int]:
        """
        Fetch trades of one contract above the cursor block.

        Returns the sales and the block up to which this contract is fully
        ingested.
        """
        from_block = cursor + 1 if cursor > 0 else None
        pending = self._backfill.get(contract)
        to_block = pending[0] if pending else None

        sales: List[SaleEvent] = []
        page_cursor: Optional[str] = None

        for _ in range(self.max_pages):
            data = await self._fetch_page(contract, from_block, to_block, page_cursor)
            trades = data.get("result") or []
            for trade in trades:
                try:
                    sales.append(SaleEvent.from_moralis(trade, contract))
                except (TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed trade {trade.get('transaction_hash')}: {e}")

            page_cursor = data.get("cursor") if trades else None
            if not page_cursor:
                break

        blocks = [s.block_number for s in sales if s.block_number > cursor]
        newest = max(blocks + [pending[1] if pending else cursor])
        logger.info(f"Fetched {len(sales)} trades for contract {contract}")

        if page_cursor and blocks:
            # the oldest block may continue on the next page, so drain it again
            ceiling = min(blocks)
            if to_block is None or ceiling < to_block:
                self._backfill[contract] = (ceiling, newest)
                logger.warning(
                    f"Page limit reached for {contract}; blocks {cursor + 1}-{ceiling} "
                    f"will be fetched on the next poll"
                )
                return sales, cursor
            logger.error(
                f"Block {ceiling} of {contract} holds more trades than {self.max_pages} pages; "
                f"moving past it"
            )

        self._backfill.pop(contract, None)
        return sales, newest

    async def fetch_sales_since(self, cursor: int) -> Tuple[List[SaleEvent], int]:
        """Fetch sales from all monitored contracts newer than the cursor block."""
        sales: List[SaleEvent] = []
        ingested: List[int] = []
        for contract in self.config.contracts:
            contract_sales, contract_cursor = await self.fetch_contract_sales(contract, cursor)
            sales.extend(contract_sales)
            ingested.append(contract_cursor)

        # Oldest first so that posting follows chain order
        sales = [s for s in sales if s.block_number > cursor]
        sales.sort(key=lambda s: s.block_number)

        new_cursor = min(ingested) if ingested else cursor
        return sales, max(cursor, new_cursor)
