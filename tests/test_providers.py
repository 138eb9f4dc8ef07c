import pandas as pd
import pytest
import requests

from tickle.providers import yahoo
from tickle.providers.alpha_vantage import AlphaVantageProvider
from tickle.providers.base import ProviderError, ProviderErrorReason, http_get
from tickle.providers.stooq import StooqProvider
from tickle.providers.yahoo import YahooProvider


def _stooq_csv(n=60, start=100.0):
    dates = pd.bdate_range(end="2024-01-02", periods=n)
    lines = ["Date,Open,High,Low,Close,Volume"]
    for i, d in enumerate(dates):
        c = start + i
        lines.append(f"{d:%Y-%m-%d},{c},{c + 1},{c - 1},{c},1000")
    return "\n".join(lines) + "\n"


def test_http_get_maps_status_codes(fake_session, fake_response):
    throttled = fake_session(lambda url, params: fake_response(429))
    with pytest.raises(ProviderError) as exc:
        http_get(throttled, "https://example.test")
    assert exc.value.reason == ProviderErrorReason.RATE_LIMITED

    broken = fake_session(lambda url, params: fake_response(503))
    with pytest.raises(ProviderError) as exc:
        http_get(broken, "https://example.test")
    assert exc.value.reason == ProviderErrorReason.TRANSPORT

    offline = fake_session(lambda url, params: requests.ConnectionError("refused"))
    with pytest.raises(ProviderError) as exc:
        http_get(offline, "https://example.test")
    assert exc.value.reason == ProviderErrorReason.TRANSPORT


def test_stooq_parses_csv(fake_session, fake_response):
    session = fake_session(lambda url, params: fake_response(200, text=_stooq_csv()))
    df = StooqProvider(session=session).fetch_closes("AAPL")
    assert list(df.columns) == ["date", "close"]
    assert len(df) == 60
    assert df["close"].iloc[-1] == 159.0
    assert df["date"].iloc[-1] == "2024-01-02"
    assert df.attrs["symbol"] == "aapl.us"
    assert session.calls[0][1] == {"s": "aapl.us", "i": "d"}


def test_stooq_falls_back_to_bare_symbol(fake_session, fake_response):
    def handler(url, params):
        if params["s"] == "aapl.us":
            return fake_response(200, text="No data")
        return fake_response(200, text=_stooq_csv())

    df = StooqProvider(session=fake_session(handler)).fetch_closes("AAPL")
    assert df.attrs["symbol"] == "aapl"


def test_stooq_daily_limit_is_rate_limited(fake_session, fake_response):
    session = fake_session(lambda url, params: fake_response(200, text="Exceeded the daily hits limit"))
    with pytest.raises(ProviderError) as exc:
        StooqProvider(session=session).fetch_closes("AAPL")
    assert exc.value.reason == ProviderErrorReason.RATE_LIMITED


def test_stooq_transport_failure(fake_session, fake_response):
    session = fake_session(lambda url, params: fake_response(500))
    with pytest.raises(ProviderError) as exc:
        StooqProvider(session=session).fetch_closes("AAPL")
    assert exc.value.reason == ProviderErrorReason.TRANSPORT


def test_stooq_too_few_rows_is_no_data(fake_session, fake_response):
    session = fake_session(lambda url, params: fake_response(200, text=_stooq_csv(n=10)))
    with pytest.raises(ProviderError) as exc:
        StooqProvider(session=session).fetch_closes("AAPL")
    assert exc.value.reason == ProviderErrorReason.NO_DATA


def _av_payload(n=30):
    dates = pd.bdate_range(end="2024-01-02", periods=n)
    return {
        "Meta Data": {"2. Symbol": "IBM"},
        "Time Series (Daily)": {
            f"{d:%Y-%m-%d}": {"1. open": "1.0", "4. close": f"{100 + i}.50", "5. adjusted close": "1.0"}
            for i, d in enumerate(reversed(dates))
        },
    }


def test_alpha_vantage_parses_series(fake_session, fake_response):
    session = fake_session(lambda url, params: fake_response(200, payload=_av_payload()))
    df = AlphaVantageProvider(api_key="demo", session=session).fetch_closes("IBM")
    assert len(df) == 30
    # newest date got the smallest index above; output is oldest first
    assert df["date"].iloc[-1] == "2024-01-02"
    assert df["close"].iloc[-1] == 100.5
    assert session.calls[0][1]["function"] == "TIME_SERIES_DAILY_ADJUSTED"
    assert session.calls[0][1]["outputsize"] == "full"


@pytest.mark.parametrize("key", ["Note", "Information"])
def test_alpha_vantage_throttle_payload(fake_session, fake_response, key):
    session = fake_session(lambda url, params: fake_response(200, payload={key: "Thank you for using Alpha Vantage!"}))
    with pytest.raises(ProviderError) as exc:
        AlphaVantageProvider(api_key="demo", session=session).fetch_closes("IBM")
    assert exc.value.reason == ProviderErrorReason.RATE_LIMITED


def test_alpha_vantage_unknown_symbol_is_no_data(fake_session, fake_response):
    session = fake_session(lambda url, params: fake_response(200, payload={"Error Message": "Invalid API call."}))
    with pytest.raises(ProviderError) as exc:
        AlphaVantageProvider(api_key="demo", session=session).fetch_closes("IBM")
    assert exc.value.reason == ProviderErrorReason.NO_DATA
    assert [p["symbol"] for _, p in session.calls] == ["IBM", "IBM.US"]


def test_alpha_vantage_without_key_makes_no_request(fake_session):
    session = fake_session(lambda url, params: AssertionError("should not be called"))
    provider = AlphaVantageProvider(api_key="", session=session)
    assert not provider.enabled
    with pytest.raises(ProviderError) as exc:
        provider.fetch_closes("IBM")
    assert exc.value.reason == ProviderErrorReason.NO_DATA
    assert session.calls == []


def _yf_frame(n=60):
    idx = pd.bdate_range(end="2024-01-02", periods=n, name="Date")
    close = [50.0 + i for i in range(n)]
    cols = pd.MultiIndex.from_tuples([("Adj Close", "AAPL"), ("Close", "AAPL"), ("Volume", "AAPL")])
    return pd.DataFrame({cols[0]: [c - 1 for c in close], cols[1]: close, cols[2]: [1] * n}, index=idx)


def test_yahoo_prefers_close_over_adjusted(monkeypatch):
    monkeypatch.setattr(yahoo.yf, "download", lambda **kwargs: _yf_frame())
    df = YahooProvider().fetch_closes("AAPL")
    assert len(df) == 60
    assert df["close"].iloc[-1] == 109.0
    assert df["date"].iloc[-1] == "2024-01-02"
    assert df.attrs["symbol"] == "AAPL"


def test_yahoo_rate_limit(monkeypatch):
    def boom(**kwargs):
        raise RuntimeError("Too Many Requests. Rate limited. Try after a while.")

    monkeypatch.setattr(yahoo.yf, "download", boom)
    with pytest.raises(ProviderError) as exc:
        YahooProvider(retry_attempts=1).fetch_closes("AAPL")
    assert exc.value.reason == ProviderErrorReason.RATE_LIMITED


def test_yahoo_other_errors_are_transport(monkeypatch):
    def boom(**kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(yahoo.yf, "download", boom)
    with pytest.raises(ProviderError) as exc:
        YahooProvider(retry_attempts=1).fetch_closes("AAPL")
    assert exc.value.reason == ProviderErrorReason.TRANSPORT


def test_yahoo_empty_frame_is_no_data(monkeypatch):
    monkeypatch.setattr(yahoo.yf, "download", lambda **kwargs: pd.DataFrame())
    with pytest.raises(ProviderError) as exc:
        YahooProvider().fetch_closes("AAPL")
    assert exc.value.reason == ProviderErrorReason.NO_DATA


def test_symbol_candidates_per_provider():
    assert StooqProvider().symbol_candidates("AAPL") == ["aapl.us", "aapl"]
    assert YahooProvider().symbol_candidates("AAPL") == ["AAPL"]
    assert AlphaVantageProvider(api_key="k").symbol_candidates("IBM") == ["IBM", "IBM.US"]


def test_alpha_vantage_transport_error_tries_next_symbol(fake_session, fake_response):
    def handler(url, params):
        if params["symbol"] == "IBM":
            return fake_response(502)
        return fake_response(200, payload=_av_payload())

    session = fake_session(handler)
    df = AlphaVantageProvider(api_key="demo", session=session).fetch_closes("IBM")
    assert df.attrs["symbol"] == "IBM.US"
    assert [p["symbol"] for _, p in session.calls] == ["IBM", "IBM.US"]


def test_alpha_vantage_all_symbols_unreachable(fake_session, fake_response):
    session = fake_session(lambda url, params: requests.Timeout("read timed out"))
    with pytest.raises(ProviderError) as exc:
        AlphaVantageProvider(api_key="demo", session=session).fetch_closes("IBM")
    assert exc.value.reason == ProviderErrorReason.TRANSPORT
    assert len(session.calls) == 2
