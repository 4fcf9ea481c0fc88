import pytest
import responses

from micrort.usagestats import DEFAULT_URL, fetch_usage, format_count, summarize

RESULTS = {
    "20190520-micro.new": {"count": {"requests": 10}},
    "20190521-micro.new": {"count": {"requests": 5}},
    "20190601-micro.api": {"count": {"requests": 3}},
    "nodots": {"count": {"requests": 99}},
}


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def test_format_count_plain():
    assert format_count("new", 5) == "micro new:\t5.00"


def test_format_count_billions():
    assert format_count("api", 1500000000) == "micro api:\t1.50b"


def test_format_count_zero_is_skipped():
    assert format_count("new", 0) is None


@pytest.mark.parametrize("value, unit", [(20000, "k"), (2000000, "m"), (9000, "0")])
def test_format_count_suffix(value, unit):
    assert format_count("x", value).endswith(unit)


def test_summarize_totals_and_highest():
    summary = summarize(RESULTS)
    assert summary.totals == {"new": 10 + 5, "api": 3}
    assert summary.highest == {"new": 10, "api": 3}
    assert "nodots" not in summary.totals


def test_summarize_monthly_keys():
    summary = summarize(RESULTS)
    assert set(summary.monthly) == {"new (201905)", "api (201906)"}
    assert sum(summary.monthly.values()) == sum(summary.totals.values())


def test_summarize_filter():
    summary = summarize(RESULTS, "api")
    assert summary.totals == {"api": 3}
    assert set(summary.monthly) == {"api (201906)"}


def test_render_sections_in_order():
    text = summarize(RESULTS).render()
    total = text.index("Total requests:")
    highest = text.index("Highest requests:")
    monthly = text.index("Monthly requests:")
    assert total < highest < monthly
    assert monthly < text.index("api (201906)") < text.index("new (201905)")


def test_fetch_usage(mocked):
    mocked.add(responses.GET, DEFAULT_URL, json=RESULTS)
    assert fetch_usage() == RESULTS


def test_fetch_usage_bad_body(mocked):
    mocked.add(responses.GET, DEFAULT_URL, body="nope")
    with pytest.raises(ValueError):
        fetch_usage()