"""Tweet text formatting for sales."""

import logging
from typing import Callable, List, Optional

from ..core.interfaces import FormattedMessage, SaleEvent, SaleFormatter

logger = logging.getLogger(__name__)

MAX_TWEET_LENGTH = 280
MAX_NAME_LENGTH = 60


def shorten_address(address: str) -> str:
    """0x1234...abcd"""
    if not address or len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


class TweetFormatter(SaleFormatter):
    """
    Formats a sale as:

        💰 SOLD

        name.eth

        Price: 2.00 ETH ($8,000.00)
        Seller: 0x1234...abcd
        Buyer: @handle

        https://app.ens.domains/name.eth

    resolve_name maps an address to a display handle; addresses are
    shortened when it returns nothing.
    """

    def __init__(self, resolve_name: Optional[Callable[[str], Optional[str]]] = None):
        self.resolve_name = resolve_name

    def _display(self, address: str) -> str:
        if self.resolve_name:
            try:
                handle = self.resolve_name(address)
            except Exception as e:
                logger.warning(f"Name resolution failed for {address}: {e}")
                handle = None
            if handle:
                return handle
        return shorten_address(address)

    def format(self, sale: SaleEvent) -> FormattedMessage:
        name = sale.name or "Unknown ENS"
        if len(name) > MAX_NAME_LENGTH:
            name = name[:MAX_NAME_LENGTH - 3] + "..."

        price_line = f"Price: {sale.price_eth:.2f} ETH"
        if sale.price_usd:
            price_line += f" (${sale.price_usd:,.2f})"

        lines: List[str] = [
            "💰 SOLD",
            "",
            name,
            "",
            price_line,
            f"Seller: {self._display(sale.seller_address)}",
            f"Buyer: {self._display(sale.buyer_address)}",
            "",
            f"https://app.ens.domains/{sale.name}",
        ]
        text = "\n".join(lines)

        if len(text) > MAX_TWEET_LENGTH:
            # the link is the only unbounded part left
            text = "\n".join(lines[:-2])
        return FormattedMessage(text=text)

    def validate(self, text: str) -> List[str]:
        """Return a list of problems with the tweet text (empty if valid)."""
        errors = []
        if not text or not text.strip():
            errors.append("Tweet content cannot be empty")
        if len(text) > MAX_TWEET_LENGTH:
            errors.append(f"Tweet too long: {len(text)} characters (max {MAX_TWEET_LENGTH})")
        for label in ("Price:", "Seller:", "Buyer:"):
            if label not in text:
                errors.append(f"Tweet should include \"{label}\" label")
        return errors
