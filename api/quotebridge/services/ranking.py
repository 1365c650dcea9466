from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from quotebridge.services.records import ACTIVE_QUOTE_STATUSES, QuoteRecord


@dataclass(slots=True, frozen=True)
class RankedQuote:
    quote_id: str
    contractor_id: str
    price: Decimal
    status: str
    is_competitive: bool


@dataclass(slots=True, frozen=True)
class QuoteRanking:
    job_id: str
    lowest_price: Decimal | None
    quotes: list[RankedQuote] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return self.lowest_price is not None

    def for_contractor(self, contractor_id: str) -> RankedQuote | None:
        return next((quote for quote in self.quotes if quote.contractor_id == contractor_id), None)


def lowest_active_price(quotes: Iterable[QuoteRecord]) -> Decimal | None:
    prices = [quote.price for quote in quotes if quote.status in ACTIVE_QUOTE_STATUSES]
    return min(prices) if prices else None


def rank_quotes(job_id: str, quotes: Iterable[QuoteRecord]) -> QuoteRanking:
    active = [quote for quote in quotes if quote.status in ACTIVE_QUOTE_STATUSES]
    lowest = lowest_active_price(active)
    if lowest is None:
        return QuoteRanking(job_id=job_id, lowest_price=None)

    active.sort(key=lambda quote: (quote.price, quote.updated_at, quote.id))
    return QuoteRanking(
        job_id=job_id,
        lowest_price=lowest,
        quotes=[
            RankedQuote(
                quote_id=quote.id,
                contractor_id=quote.contractor_id,
                price=quote.price,
                status=quote.status,
                # Ties with the lowest price count as competitive.
                is_competitive=quote.price <= lowest,
            )
            for quote in active
        ],
    )
