import pytest

ccxt = pytest.importorskip("ccxt")

from arbengine.adapters import CCXTAdapter, ExchangeAdapter, build_adapter
from arbengine.config import Settings
from arbengine.engine import ExecutionOrchestrator, OpportunityDetector
from arbengine.models import SessionStatus
from tests.gateway_stubs import quote


def _live() -> Settings:
    return Settings(dry_run=False, venue_fees={})


def _paper() -> Settings:
    return Settings(dry_run=True, venue_fees={})


def test_initialization() -> None:
    adapter = CCXTAdapter("kraken", "k", "s", cfg=_live())
    assert isinstance(adapter, ExchangeAdapter)
    assert adapter.client.id == "kraken"
    assert adapter.name() == "kraken"


def test_build_adapter_normalises_venue() -> None:
    adapter = build_adapter(" 'Kraken' ", _paper())
    assert adapter.name() == "kraken"


def test_fetch_order_book(monkeypatch) -> None:
    adapter = CCXTAdapter("kraken", "k", "s", cfg=_live())

    def fake_fetch_order_book(symbol: str, limit: int) -> dict:
        assert symbol == "BTC/USD"
        assert limit == 20
        return {"bids": [], "asks": []}

    monkeypatch.setattr(adapter.client, "fetch_order_book", fake_fetch_order_book)
    assert adapter.fetch_order_book("BTC/USD", 20) == {"bids": [], "asks": []}


def test_place_order_live(monkeypatch) -> None:
    adapter = CCXTAdapter("kraken", "k", "s", cfg=_live())
    calls = []

    def fake_create_order(symbol, order_type, side, amount, price):
        calls.append((symbol, order_type, side, amount, price))
        return {"id": 42}

    monkeypatch.setattr(adapter.client, "create_order", fake_create_order)
    assert adapter.place_order("ETH/USDT", "buy", 1.0, 1000.0) == "42"
    assert adapter.place_order("ETH/USDT", "sell", 1.0) == "42"
    assert calls == [
        ("ETH/USDT", "limit", "buy", 1.0, 1000.0),
        ("ETH/USDT", "market", "sell", 1.0, None),
    ]


def test_get_order_status_maps_fields(monkeypatch) -> None:
    adapter = CCXTAdapter("kraken", "k", "s", cfg=_live())

    def fake_fetch_order(order_id, symbol):
        return {
            "id": order_id,
            "status": "closed",
            "filled": 1.5,
            "remaining": 0,
            "average": 101.0,
            "fees": [{"cost": 0.1, "currency": "USDT"}, {"cost": 0.05, "currency": "USDT"}],
        }

    monkeypatch.setattr(adapter.client, "fetch_order", fake_fetch_order)
    status = adapter.get_order_status("7", "ETH/USDT")
    assert status.is_closed
    assert status.filled == 1.5
    assert status.fill_price == 101.0
    assert status.fee == pytest.approx(0.15)
    assert status.fee_currency == "USDT"


def test_cancel_order(monkeypatch) -> None:
    adapter = CCXTAdapter("kraken", "k", "s", cfg=_live())
    called: dict[str, str] = {}

    def fake_cancel_order(order_id: str, symbol: str) -> None:
        called["order_id"] = order_id
        called["symbol"] = symbol

    monkeypatch.setattr(adapter.client, "cancel_order", fake_cancel_order)
    adapter.cancel_order("1", "ETH/USDT")
    assert called == {"order_id": "1", "symbol": "ETH/USDT"}


def test_fetch_balance(monkeypatch) -> None:
    adapter = CCXTAdapter("kraken", "k", "s", cfg=_live())
    monkeypatch.setattr(adapter.client, "fetch_balance", lambda: {"free": {"USD": 10.0}})
    assert adapter.fetch_balance("USD") == 10.0
    assert adapter.fetch_balance("EUR") == 0.0


def test_trading_fee_override_and_market(monkeypatch) -> None:
    cfg = Settings(dry_run=False, venue_fees={"kraken": 0.002})
    assert CCXTAdapter("kraken", "k", "s", cfg=cfg).trading_fee("BTC/USD") == 0.002

    adapter = CCXTAdapter("kraken", "k", "s", cfg=_live())
    monkeypatch.setattr(adapter.client, "market", lambda symbol: {"taker": 0.0026})
    assert adapter.trading_fee("BTC/USD") == 0.0026
    assert adapter.trading_fee() == adapter.settings.default_fee


def test_dry_run_simulates_fill_against_book(monkeypatch) -> None:
    adapter = CCXTAdapter("kraken", "k", "s", cfg=_paper())
    book = {"bids": [[99.0, 5.0]], "asks": [[101.0, 5.0]]}
    monkeypatch.setattr(adapter.client, "fetch_order_book", lambda symbol, limit: book)

    def refuse(*_args, **_kwargs):
        raise AssertionError("dry run must not reach the venue")

    monkeypatch.setattr(adapter.client, "create_order", refuse)
    # the market taker differs from the configured venue fee
    monkeypatch.setattr(adapter.client, "market", lambda symbol: {"taker": 0.0026})

    buy = adapter.get_order_status(adapter.place_order("BTC/USD", "buy", 2.0), "BTC/USD")
    assert buy.is_closed
    assert buy.fill_price == 101.0
    assert buy.fee == pytest.approx(2.0 * 0.001)
    assert buy.fee_currency == "BTC"

    # a limit sell never fills below its price
    oid = adapter.place_order("BTC/USD", "sell", 2.0, 100.0)
    sell = adapter.get_order_status(oid, "BTC/USD")
    assert sell.fill_price == 100.0
    assert sell.fee == pytest.approx(2.0 * 100.0 * 0.001)
    assert sell.fee_currency == "USD"
    adapter.cancel_order(oid, "BTC/USD")


def test_dry_run_balance_without_keys() -> None:
    cfg = Settings(dry_run=True, trade_amount=250.0)
    adapter = CCXTAdapter("kraken", cfg=cfg)
    assert adapter.fetch_balance("USD") == 250.0


def test_get_order_status_keeps_first_fee_currency(monkeypatch) -> None:
    adapter = CCXTAdapter("binance", "k", "s", cfg=_live())
    order = {
        "id": "9",
        "status": "closed",
        "filled": 1.0,
        "average": 100.0,
        "fee": {"cost": 0.0002, "currency": "BNB"},
    }
    monkeypatch.setattr(adapter.client, "fetch_order", lambda order_id, symbol: order)
    status = adapter.get_order_status("9", "ETH/USDT")
    assert status.fee == pytest.approx(0.0002)
    assert status.fee_currency == "BNB"

    order["fees"] = [{"cost": 0.1, "currency": "USDT"}, {"cost": 0.0002, "currency": "BNB"}]
    status = adapter.get_order_status("9", "ETH/USDT")
    assert status.fee == pytest.approx(0.1)
    assert status.fee_currency == "USDT"


@pytest.mark.parametrize("venue_fees", [{}, {"kraken": 0.0026}])
def test_paper_cycle_matching_its_quotes_completes(monkeypatch, venue_fees) -> None:
    """Dry-run fills charge the same fee detection priced the cycle with."""
    cfg = Settings(
        dry_run=True, venue_fees=venue_fees, start_assets=["USD"], min_profit_pct=0.1
    )
    prices = {"BTC/USD": 30000.0, "ETH/BTC": 0.0675, "ETH/USD": 2050.0}
    adapter = CCXTAdapter("kraken", "k", "s", cfg=cfg)
    monkeypatch.setattr(adapter.client, "market", lambda symbol: {"taker": 0.0026})
    monkeypatch.setattr(
        adapter.client,
        "fetch_order_book",
        lambda symbol, limit: {"bids": [[prices[symbol], 1e6]], "asks": [[prices[symbol], 1e6]]},
    )
    snapshot = [quote(symbol, price, "kraken") for symbol, price in prices.items()]
    opp = next(
        o
        for o in OpportunityDetector.from_settings(cfg).detect(snapshot)
        if o.id == "triangular:kraken:USD>BTC>ETH>USD"
    )

    orch = ExecutionOrchestrator({"kraken": adapter}, sleep=lambda _s: None)
    session = orch.execute(opp)

    assert session.status is SessionStatus.COMPLETED, session.errors
    assert session.rollback is None
    assert session.realized_profit_pct == pytest.approx(opp.profit_pct)
