import pytest

from influx_datasource import interval as intervals
from influx_datasource.backend import DataQuery
from influx_datasource.errors import QueryParseError, UnsupportedQueryPartError
from influx_datasource.models import DatasourceInfo, Query

TIME_FILTER = "time >= 1600000000000ms and time <= 1600003600000ms"


def _select(*parts):
    return [[{"type": t, "params": p} for t, p in parts]]


@pytest.fixture
def mean_query():
    return {
        "measurement": "cpu",
        "policy": "default",
        "select": _select(("field", ["value"]), ("mean", [])),
        "groupBy": [{"type": "time", "params": ["$__interval"]}, {"type": "fill", "params": ["null"]}],
        "tags": [{"key": "hostname", "operator": "=", "value": "server1"}],
    }


def _parse(payload, time_range, interval_ms=60000, ds_info=None, max_data_points=0):
    data_query = DataQuery(
        ref_id="A", json=payload, time_range=time_range, interval_ms=interval_ms, max_data_points=max_data_points
    )
    return Query.parse(data_query, ds_info)


def test_build_select_with_tag_and_group_by(mean_query, time_range):
    query = _parse(mean_query, time_range)

    assert query.build() == (
        f'SELECT mean("value") FROM "cpu" WHERE "hostname" = \'server1\' AND {TIME_FILTER} '
        "GROUP BY time(1m) fill(null)"
    )


def test_build_with_policy_conditions_and_regex(mean_query, time_range):
    mean_query["policy"] = "autogen"
    mean_query["groupBy"] = [{"type": "time", "params": ["auto"]}, {"type": "tag", "params": ["host"]}]
    mean_query["tags"] = [
        {"key": "host", "value": "/^server/"},
        {"key": "dc", "value": "eu", "condition": "OR"},
    ]

    query = _parse(mean_query, time_range)

    assert query.build() == (
        f'SELECT mean("value") FROM "autogen"."cpu" WHERE ("host" =~ /^server/ OR "dc" = \'eu\') AND {TIME_FILTER} '
        'GROUP BY time(1m), "host"'
    )


def test_tag_values_are_escaped_and_is_operators_mapped(mean_query, time_range):
    mean_query["tags"] = [
        {"key": "name", "operator": "Is", "value": "it's"},
        {"key": "load", "operator": ">", "value": "5"},
        {"key": "zone", "operator": "Is Not", "value": "a"},
    ]

    rendered = _parse(mean_query, time_range).build()

    assert "(\"name\" = 'it\\'s' AND \"load\" > 5 AND \"zone\" != 'a')" in rendered


def test_null_tag_value_renders_as_empty_string(mean_query, time_range):
    mean_query["tags"] = [{"key": "host", "operator": "=", "value": None}, {"key": "core", "value": 0}]

    rendered = _parse(mean_query, time_range).build()

    assert "(\"host\" = '' AND \"core\" = '0')" in rendered


def test_build_order_limit_and_timezone(mean_query, time_range):
    mean_query.update({"groupBy": [], "orderByTime": "DESC", "limit": 10, "slimit": "5", "tz": "Europe/Oslo"})
    mean_query["select"] = [
        [{"type": "field", "params": ["value"]}, {"type": "max", "params": []}, {"type": "math", "params": ["* 100"]}],
        [{"type": "field", "params": ["usage"]}, {"type": "alias", "params": ["u"]}],
    ]

    rendered = _parse(mean_query, time_range).build()

    assert rendered.startswith('SELECT max("value") * 100, "usage" AS "u" FROM "cpu"')
    assert rendered.endswith(" ORDER BY time DESC limit 10 slimit 5 tz('Europe/Oslo')")


def test_regex_measurement_is_not_quoted(mean_query, time_range):
    mean_query["measurement"] = "/^cpu.*/"
    assert ' FROM /^cpu.*/ WHERE ' in _parse(mean_query, time_range).build()


def test_raw_query_interpolates_macros(time_range):
    payload = {
        "rawQuery": True,
        "query": "SELECT mean(x) FROM y WHERE $timeFilter GROUP BY time($__interval) -- $__interval_ms",
    }

    query = _parse(payload, time_range, interval_ms=0, max_data_points=1500)

    assert query.build() == f"SELECT mean(x) FROM y WHERE {TIME_FILTER} GROUP BY time(2s) -- 2000"


def test_datasource_time_interval_is_a_floor(time_range):
    payload = {"rawQuery": True, "query": "SELECT mean(x) FROM y GROUP BY time($interval)"}
    ds_info = DatasourceInfo(time_interval=">10s")

    query = _parse(payload, time_range, interval_ms=2000, ds_info=ds_info)

    assert query.build() == "SELECT mean(x) FROM y GROUP BY time(10s)"


def test_raw_query_does_not_need_measurement(time_range):
    query = _parse({"rawQuery": True, "query": "SHOW measurements"}, time_range)
    assert query.build() == "SHOW measurements"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        "SELECT 1",
        {"select": _select(("field", ["value"]))},
        {"measurement": "cpu"},
        {"measurement": "cpu", "select": [{"type": "field", "params": ["value"]}]},
        {"measurement": "cpu", "select": [[{"params": ["value"]}]]},
    ],
)
def test_parse_rejects_malformed_payloads(payload, time_range):
    with pytest.raises(QueryParseError):
        _parse(payload, time_range)


def test_unknown_function_fails_at_build(mean_query, time_range):
    mean_query["select"] = _select(("field", ["value"]), ("frobnicate", []))
    query = _parse(mean_query, time_range)

    with pytest.raises(UnsupportedQueryPartError, match="frobnicate"):
        query.build()


def test_time_filter_requires_time_range(mean_query):
    query = Query.parse(DataQuery(ref_id="A", json=mean_query))
    with pytest.raises(QueryParseError):
        query.build()


@pytest.mark.parametrize(
    "text, expected",
    [("10s", 10000), (">1m", 60000), ("500ms", 500), ("1h", 3600000), ("30", 30000)],
)
def test_parse_interval(text, expected):
    assert intervals.parse_interval(text) == expected


def test_parse_interval_rejects_garbage():
    with pytest.raises(QueryParseError):
        intervals.parse_interval("soon")


def test_interval_rounding_and_formatting():
    assert intervals.round_interval(2400) == 2000
    assert intervals.round_interval(80000) == 60000
    assert intervals.format_duration(90000) == "1m"
    assert intervals.format_duration(intervals.DAY * 2) == "2d"
    assert intervals.format_duration(0) == "1ms"
