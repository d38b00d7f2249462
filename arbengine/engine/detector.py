"""Opportunity detection: cross-venue spreads and single-venue cycles.

Both detectors are pure functions of a price snapshot and their
configuration, so the same snapshot always yields the same ranked list.

Triangular conversion contract: a symbol ``BASE/QUOTE`` quoted at ``P``
means one BASE is worth ``P`` QUOTE. Holding BASE and moving into QUOTE is a
``sell`` and multiplies by ``P``; holding QUOTE and moving into BASE is a
``buy`` and divides by ``P``. A per-hop fee multiplier of ``1 - fee`` is
applied after every conversion.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import replace
from typing import Callable, Iterable, Sequence

from arbengine.models import Hop, Opportunity, OpportunityKind, PricePoint, Side

log = logging.getLogger(__name__)

FeeLookup = Callable[[str], float]
CapitalLookup = Callable[[str], float]


def _valid(points: Iterable[PricePoint]) -> list[PricePoint]:
    """Drop quotes that cannot be priced, keeping the newest per venue/symbol."""

    latest: dict[tuple[str, str], PricePoint] = {}
    for p in points:
        if "/" not in p.symbol or not p.venue:
            log.debug("dropping malformed quote %r", p)
            continue
        if not (isinstance(p.price, (int, float)) and math.isfinite(p.price)):
            log.debug("dropping unpriced quote %s@%s", p.symbol, p.venue)
            continue
        if p.price <= 0:
            continue
        key = (p.venue, p.symbol)
        prev = latest.get(key)
        if prev is None or p.timestamp >= prev.timestamp:
            latest[key] = p
    return [latest[k] for k in sorted(latest)]


def plan_amounts(hops: Sequence[Hop], capital: float, fee_for: FeeLookup) -> tuple[Hop, ...]:
    """Return *hops* with estimated BASE order sizes for *capital*."""

    held = capital
    planned: list[Hop] = []
    for hop in hops:
        planned.append(replace(hop, amount=hop.order_amount(held)))
        held = hop.convert(held) * (1.0 - fee_for(hop.venue))
    return tuple(planned)


def cycle_value(hops: Sequence[Hop], fee_for: FeeLookup, start: float = 1.0) -> float:
    """Return the amount obtained by pushing *start* through *hops* after fees."""

    value = start
    for hop in hops:
        value = hop.convert(value) * (1.0 - fee_for(hop.venue))
    return value


def simple_profit_pct(lowest_ask: float, highest_bid: float, total_fee: float) -> float:
    """Return the fee-adjusted profit percentage of buying at ask, selling at bid."""

    return ((highest_bid / lowest_ask) * (1.0 - total_fee) - 1.0) * 100.0


def _best_pair(quotes: Sequence[PricePoint]) -> tuple[PricePoint, PricePoint] | None:
    """Return ``(buy_quote, sell_quote)`` on distinct venues with the widest spread."""

    by_ask = sorted(quotes, key=lambda p: (p.best_ask, p.venue))
    by_bid = sorted(quotes, key=lambda p: (-p.best_bid, p.venue))
    buy, sell = by_ask[0], by_bid[0]
    if buy.venue != sell.venue:
        return buy, sell
    if len(quotes) < 2:
        return None
    alt_sell = next(p for p in by_bid if p.venue != buy.venue)
    alt_buy = next(p for p in by_ask if p.venue != sell.venue)
    if alt_sell.best_bid / buy.best_ask >= sell.best_bid / alt_buy.best_ask:
        return buy, alt_sell
    return alt_buy, sell


def find_simple(
    snapshot: Iterable[PricePoint],
    *,
    min_profit_pct: float,
    fee_for: FeeLookup,
    capital_for: CapitalLookup,
) -> list[Opportunity]:
    """Return cross-venue opportunities meeting *min_profit_pct*."""

    by_symbol: dict[str, list[PricePoint]] = defaultdict(list)
    for p in _valid(snapshot):
        by_symbol[p.symbol].append(p)

    out: list[Opportunity] = []
    for symbol in sorted(by_symbol):
        quotes = by_symbol[symbol]
        if len({q.venue for q in quotes}) < 2:
            continue
        pair = _best_pair(quotes)
        if pair is None:
            continue
        buy, sell = pair
        total_fee = fee_for(buy.venue) + fee_for(sell.venue)
        pct = simple_profit_pct(buy.best_ask, sell.best_bid, total_fee)
        if pct < min_profit_pct:
            continue
        capital = capital_for(buy.quote)
        hops = plan_amounts(
            (
                Hop(buy.venue, symbol, "buy", buy.quote, buy.base, buy.best_ask),
                Hop(sell.venue, symbol, "sell", sell.base, sell.quote, sell.best_bid),
            ),
            capital,
            fee_for,
        )
        out.append(
            Opportunity(
                id=f"simple:{buy.venue}>{sell.venue}:{symbol}",
                kind=OpportunityKind.SIMPLE,
                path=(symbol,),
                venues=(buy.venue, sell.venue),
                hops=hops,
                expected_profit=capital * pct / 100.0,
                profit_pct=pct,
                min_required_capital=capital,
                discovered_at=min(buy.timestamp, sell.timestamp),
            )
        )
    return out


def _adjacency(points: Sequence[PricePoint]) -> dict[str, list[tuple[str, PricePoint, Side]]]:
    """Return ``{asset: [(neighbour, quote, side), ...]}`` for one venue."""

    adj: dict[str, list[tuple[str, PricePoint, Side]]] = defaultdict(list)
    for p in points:
        adj[p.base].append((p.quote, p, "sell"))
        adj[p.quote].append((p.base, p, "buy"))
    for edges in adj.values():
        edges.sort(key=lambda e: (e[0], e[1].symbol))
    return adj


def _venue_cycles(
    venue: str,
    points: Sequence[PricePoint],
    start_assets: Sequence[str],
    max_path_length: int,
) -> Iterable[tuple[tuple[str, ...], tuple[Hop, ...], float]]:
    """Yield ``(path, hops, discovered_at)`` for every simple cycle on *venue*.

    A cycle is closed only after visiting at least three distinct assets and
    never uses more than *max_path_length* hops.
    """

    adj = _adjacency(points)
    starts = sorted(adj) if not start_assets else [a for a in start_assets if a in adj]

    def walk(path: list[str], hops: list[Hop], stamps: list[float]):
        current = path[-1]
        for nbr, quote, side in adj[current]:
            hop = Hop(venue, quote.symbol, side, current, nbr, quote.price)
            if nbr == path[0]:
                if len(path) >= 3 and len(path) <= max_path_length:
                    yield (
                        tuple(path + [nbr]),
                        tuple(hops + [hop]),
                        min(stamps + [quote.timestamp]),
                    )
                continue
            if nbr in path or len(path) >= max_path_length:
                continue
            yield from walk(path + [nbr], hops + [hop], stamps + [quote.timestamp])

    for start in starts:
        yield from walk([start], [], [])


def find_triangular(
    snapshot: Iterable[PricePoint],
    *,
    min_profit_pct: float,
    max_path_length: int,
    fee_for: FeeLookup,
    capital_for: CapitalLookup,
    start_assets: Sequence[str] = (),
) -> list[Opportunity]:
    """Return single-venue cycles whose fee-adjusted value meets the minimum."""

    by_venue: dict[str, list[PricePoint]] = defaultdict(list)
    for p in _valid(snapshot):
        by_venue[p.venue].append(p)

    found: dict[str, Opportunity] = {}
    for venue in sorted(by_venue):
        for path, hops, stamp in _venue_cycles(
            venue, by_venue[venue], start_assets, max_path_length
        ):
            pct = (cycle_value(hops, fee_for) - 1.0) * 100.0
            if pct < min_profit_pct:
                continue
            capital = capital_for(path[0])
            opp = Opportunity(
                id=f"triangular:{venue}:{'>'.join(path)}",
                kind=OpportunityKind.TRIANGULAR,
                path=path,
                venues=(venue,),
                hops=plan_amounts(hops, capital, fee_for),
                expected_profit=capital * pct / 100.0,
                profit_pct=pct,
                min_required_capital=capital,
                discovered_at=stamp,
            )
            prev = found.get(opp.id)
            if prev is None or opp.profit_pct > prev.profit_pct:
                found[opp.id] = opp
    return list(found.values())


def rank(opportunities: Iterable[Opportunity]) -> list[Opportunity]:
    """Order by profit descending, then lower capital, then id."""

    return sorted(
        opportunities,
        key=lambda o: (-o.profit_pct, o.min_required_capital, o.id),
    )


class OpportunityDetector:
    """Turn a price snapshot into a ranked list of opportunities."""

    def __init__(
        self,
        *,
        min_profit_pct: float = 0.5,
        max_path_length: int = 3,
        fee_for: FeeLookup | None = None,
        capital_for: CapitalLookup | None = None,
        start_assets: Sequence[str] = (),
    ) -> None:
        self.min_profit_pct = min_profit_pct
        self.max_path_length = max_path_length
        self.fee_for = fee_for or (lambda _venue: 0.001)
        self.capital_for = capital_for or (lambda _asset: 100.0)
        self.start_assets = tuple(a.upper() for a in start_assets)

    @classmethod
    def from_settings(cls, cfg) -> "OpportunityDetector":
        return cls(
            min_profit_pct=cfg.min_profit_pct,
            max_path_length=cfg.max_path_length,
            fee_for=cfg.fee_for,
            capital_for=cfg.capital_for,
            start_assets=cfg.start_assets,
        )

    def find_simple(self, snapshot: Iterable[PricePoint]) -> list[Opportunity]:
        return find_simple(
            snapshot,
            min_profit_pct=self.min_profit_pct,
            fee_for=self.fee_for,
            capital_for=self.capital_for,
        )

    def find_triangular(self, snapshot: Iterable[PricePoint]) -> list[Opportunity]:
        return find_triangular(
            snapshot,
            min_profit_pct=self.min_profit_pct,
            max_path_length=self.max_path_length,
            fee_for=self.fee_for,
            capital_for=self.capital_for,
            start_assets=self.start_assets,
        )

    def detect(self, snapshot: Iterable[PricePoint]) -> list[Opportunity]:
        """Return simple and triangular opportunities merged and ranked."""

        points = list(snapshot)
        return rank(self.find_simple(points) + self.find_triangular(points))
