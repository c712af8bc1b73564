"""
Tests for period bucketing, metric reduction and summary helpers.
"""

import datetime as dt

import pytest

from core.models import AggregationType, Granularity, MetricDescriptor
from engine.aggregate import (
    aggregate,
    aggregate_values,
    chart_records,
    filter_by_date_range,
    metric_range,
    metric_total,
    period_key,
    period_label,
)


@pytest.fixture
def sales_rows():
    return [
        {"date": "2024-01-01", "sales": 100},
        {"date": "2024-01-15", "sales": 50},
        {"date": "2024-02-01", "sales": 200},
    ]


@pytest.fixture
def ad_rows():
    return [
        {"Day": "2024-03-04", "Clicks": 10, "Impressions": 1000, "CTR": "1.0%", "Spend": "$5.00"},
        {"Day": "2024-03-04", "Clicks": 30, "Impressions": 1000, "CTR": "3.0%", "Spend": "$7.50"},
        {"Day": "2024-03-05", "Clicks": 5, "Impressions": 500, "CTR": "1.0%", "Spend": None},
        {"Day": "not a date", "Clicks": 99, "Impressions": 9, "CTR": "9%", "Spend": "$1"},
        {"Day": 45388, "Clicks": 1, "Impressions": 100, "CTR": "1%", "Spend": "$2"},
        {"Day": "2024-05-20", "Clicks": 8, "Impressions": 400, "CTR": "2%", "Spend": "$3"},
        {"Day": "2023-12-31", "Clicks": 2, "Impressions": 200, "CTR": "1%", "Spend": "$1"},
    ]


def _metric(field, agg="sum"):
    return MetricDescriptor(field=field, aggregation_type=agg)


class TestPeriods:
    """Tests for period keys and labels."""

    @pytest.mark.parametrize("granularity,key,label", [
        ("day", "2024-03-04", "Mar 4, 2024"),
        ("month", "2024-03", "Mar 2024"),
        ("quarter", "2024-Q1", "2024 Q1"),
    ])
    def test_key_and_label(self, granularity, key, label):
        when = dt.datetime(2024, 3, 4, 15, 30)
        assert period_key(when, granularity) == key
        assert period_label(key, granularity) == label

    @pytest.mark.parametrize("month,abbr", list(enumerate(
        ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
        start=1,
    )))
    def test_month_labels(self, month, abbr):
        assert period_label(f"2024-{month:02d}", "month") == f"{abbr} 2024"
        assert period_label(f"2024-{month:02d}-09", "day") == f"{abbr} 9, 2024"

    def test_quarters(self):
        assert period_key(dt.datetime(2024, 4, 1), "quarter") == "2024-Q2"
        assert period_key(dt.datetime(2024, 12, 31), "quarter") == "2024-Q4"

    def test_granularity_aliases(self):
        assert Granularity("monthly") is Granularity.month
        assert Granularity("Quarterly") is Granularity.quarter

    def test_unknown_granularity_is_programming_error(self):
        with pytest.raises(ValueError):
            aggregate([{"date": "2024-01-01"}], {"date": "date"}, "weekly", [])


class TestAggregateValues:
    """Tests for the reduction rules."""

    @pytest.mark.parametrize("agg,expected", [
        ("sum", 10), ("average", 2.5), ("count", 4), ("min", 1), ("max", 4),
    ])
    def test_reductions(self, agg, expected):
        assert aggregate_values([1, 2, None, 3, float("nan"), 4], agg) == expected

    @pytest.mark.parametrize("agg", list(AggregationType))
    def test_empty_is_zero(self, agg):
        assert aggregate_values([], agg) == 0
        assert aggregate_values([None, float("nan")], agg) == 0


class TestAggregate:
    """Tests for grouping rows into periods."""

    def test_monthly_scenario(self, sales_rows):
        periods = aggregate(sales_rows, {"date": "date"}, "month", [_metric("sales")])
        assert [p.period_key for p in periods] == ["2024-01", "2024-02"]
        assert [p.values["sales"] for p in periods] == [150, 200]
        assert [p.row_count for p in periods] == [2, 1]
        assert periods[0].label == "Jan 2024"
        assert periods[0].date == dt.date(2024, 1, 1)

    def test_empty_inputs(self, sales_rows):
        assert aggregate([], {"date": "date"}, "day", [_metric("sales")]) == []
        assert aggregate(sales_rows, {}, "day", [_metric("sales")]) == []
        assert aggregate(sales_rows, {"date": {"column": "__formula__", "formula": "1"}}, "day", []) == []

    def test_daily_groups_and_drops_unparsable(self, ad_rows):
        mapping = {"date": "Day", "clicks": "Clicks"}
        periods = aggregate(ad_rows, mapping, "day", [_metric("clicks")])

        parsable = [r for r in ad_rows if r["Day"] != "not a date"]
        distinct_days = {"2024-03-04", "2024-03-05", "2024-04-06", "2024-05-20", "2023-12-31"}
        assert len(periods) == len(distinct_days)
        assert {p.period_key for p in periods} == distinct_days
        assert sum(p.row_count for p in periods) == len(parsable)

    def test_chronological_order(self, ad_rows):
        periods = aggregate(ad_rows, {"date": "Day"}, "day", [])
        dates = [p.date for p in periods]
        assert dates == sorted(dates)
        assert periods[0].period_key == "2023-12-31"

    def test_quarter_order_across_years(self, ad_rows):
        periods = aggregate(ad_rows, {"date": "Day"}, "quarter", [])
        assert [p.period_key for p in periods] == ["2023-Q4", "2024-Q1", "2024-Q2"]
        assert [p.label for p in periods] == ["2023 Q4", "2024 Q1", "2024 Q2"]

    def test_metric_resolution_via_mapping(self, ad_rows):
        mapping = {"date": "Day", "spend": {"column": "Spend"}, "ctr": {"column": "CTR", "isPercentage": True}}
        metrics = [_metric("spend"), _metric("ctr", "average"), _metric("Impressions", "max")]
        first = aggregate(ad_rows, mapping, "day", metrics)[1]
        assert first.period_key == "2024-03-04"
        assert first.values["spend"] == pytest.approx(12.5)
        assert first.values["ctr"] == pytest.approx(2.0)
        assert first.values["Impressions"] == 1000

    def test_mixed_reductions_per_bucket(self, ad_rows):
        mapping = {"date": "Day", "spend": "Spend"}
        metrics = [_metric("Clicks", "min"), _metric("Impressions", "max"), _metric("spend", "count")]
        periods = {p.period_key: p for p in aggregate(ad_rows, mapping, "day", metrics)}

        assert periods["2024-03-04"].values == {"Clicks": 10, "Impressions": 1000, "spend": 2}
        assert periods["2024-03-05"].values == {"Clicks": 5, "Impressions": 500, "spend": 0}
        assert all(isinstance(v, float) for v in periods["2024-03-04"].values.values())

    def test_empty_value_set_is_zero(self, ad_rows):
        periods = aggregate(ad_rows, {"date": "Day", "spend": "Spend"}, "day", [_metric("spend", "average")])
        march_5 = next(p for p in periods if p.period_key == "2024-03-05")
        assert march_5.values["spend"] == 0
        assert march_5.row_count == 1

    def test_unknown_column_is_zero(self, sales_rows):
        periods = aggregate(sales_rows, {"date": "date"}, "month", [_metric("nope", "min")])
        assert all(p.values["nope"] == 0 for p in periods)

    def test_formula_metric_per_row(self, ad_rows):
        mapping = {
            "date": "Day",
            "ctr_calc": {"column": "__formula__", "formula": "{Clicks} / {Impressions} * 100"},
        }
        periods = aggregate(ad_rows, mapping, "day", [_metric("ctr_calc", "average")])
        march_4 = next(p for p in periods if p.period_key == "2024-03-04")
        assert march_4.values["ctr_calc"] == pytest.approx(2.0)

    def test_metric_formula_overrides_mapping(self, sales_rows):
        metric = MetricDescriptor(field="double", formula="{sales} * 2")
        periods = aggregate(sales_rows, {"date": "date"}, "month", [metric])
        assert [p.values["double"] for p in periods] == [300, 400]

    def test_date_range_filter(self, ad_rows):
        periods = aggregate(
            ad_rows, {"date": "Day"}, "day", [],
            start=dt.date(2024, 3, 1), end=dt.date(2024, 4, 30),
        )
        assert [p.period_key for p in periods] == ["2024-03-04", "2024-03-05", "2024-04-06"]

    def test_idempotent(self, ad_rows):
        mapping = {"date": "Day", "clicks": "Clicks"}
        metrics = [_metric("clicks"), _metric("Impressions", "average")]
        first = aggregate(ad_rows, mapping, "month", metrics)
        second = aggregate(ad_rows, mapping, "month", metrics)
        assert [p.model_dump() for p in first] == [p.model_dump() for p in second]

    def test_rows_not_mutated(self, sales_rows):
        snapshot = [dict(r) for r in sales_rows]
        aggregate(sales_rows, {"date": "date"}, "day", [_metric("sales")])
        assert sales_rows == snapshot


class TestSummaries:
    """Tests for totals, ranges and chart records."""

    def test_totals_and_ranges(self, sales_rows):
        periods = aggregate(sales_rows, {"date": "date"}, "month", [_metric("sales")])
        assert metric_total(periods, "sales") == 350
        assert metric_total(periods, "sales", "average") == 175
        assert metric_total(periods, "missing") == 0

        rng = metric_range(periods, "sales")
        assert (rng.min, rng.max) == (150, 200)
        assert metric_range([], "sales").model_dump() == {"min": 0, "max": 0}

    def test_chart_records(self, sales_rows):
        periods = aggregate(sales_rows, {"date": "date"}, "month", [_metric("sales")])
        records = chart_records(periods)
        assert records[0] == {
            "period_key": "2024-01",
            "label": "Jan 2024",
            "name": "Jan 2024",
            "date": "2024-01-01",
            "row_count": 2,
            "sales": 150,
        }

    def test_filter_by_date_range(self, sales_rows):
        kept = filter_by_date_range(sales_rows, "date", start=dt.date(2024, 1, 15))
        assert [r["date"] for r in kept] == ["2024-01-15", "2024-02-01"]
        assert filter_by_date_range(sales_rows, "date") == sales_rows
