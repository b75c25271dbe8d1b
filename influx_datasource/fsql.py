# influx_datasource/fsql.py
import re

import pandas as pd
import pyarrow.flight
from influxdb_client_3 import InfluxDBClient3
from influxdb_client_3.exceptions import InfluxDB3ClientQueryError
from mlrun.utils import logger

from . import interval as intervals
from .backend import DataQuery, DataResponse, QueryDataRequest, QueryDataResponse
from .errors import QueryParseError, ServerError, TransportError
from .models import DatasourceInfo

_TIME_FILTER = re.compile(r"\$__timeFilter\(\s*([^)]*?)\s*\)")


def query(ds_info: DatasourceInfo, request: QueryDataRequest) -> QueryDataResponse:
    response = QueryDataResponse()
    client = InfluxDBClient3(
        host=ds_info.url,
        token=ds_info.token,
        database=ds_info.db_name or ds_info.default_bucket,
        org=ds_info.organization,
    )
    try:
        for data_query in request.queries:
            try:
                sql = interpolate(data_query, ds_info)
            except QueryParseError as e:
                response.responses[data_query.ref_id] = DataResponse(error=e)
                continue
            response.responses[data_query.ref_id] = _execute(client, data_query.ref_id, sql, _flight_headers(ds_info.metadata))
    finally:
        client.close()
    return response


def interpolate(data_query: DataQuery, ds_info: DatasourceInfo) -> str:
    model = data_query.json if isinstance(data_query.json, dict) else {}
    sql = model.get("rawSql") or model.get("query") or ""
    if not sql:
        raise QueryParseError(f"query {data_query.ref_id}: SQL text is empty")

    time_range = data_query.time_range
    if time_range is not None:
        start = time_range.from_.isoformat().replace("+00:00", "Z")
        end = time_range.to.isoformat().replace("+00:00", "Z")
        sql = _TIME_FILTER.sub(lambda m: f"{m.group(1)} >= '{start}' AND {m.group(1)} <= '{end}'", sql)
        sql = sql.replace("$__timeFrom", f"'{start}'").replace("$__timeTo", f"'{end}'")
    elif "$__time" in sql:
        raise QueryParseError(f"query {data_query.ref_id}: time macros require a time range")

    interval = intervals.calculate(
        time_range,
        interval_ms=data_query.interval_ms,
        max_data_points=data_query.max_data_points,
        min_interval=model.get("interval") or ds_info.time_interval,
    )
    sql = sql.replace("$__interval_ms", str(interval.milliseconds))
    sql = sql.replace("$__interval", f"interval '{interval.milliseconds} milliseconds'")
    return sql


def _flight_headers(metadata) -> list:
    """Flatten the configured `metadata` maps into gRPC call headers (keys lowercased)."""
    return [(str(k).lower().encode(), str(v).encode()) for entry in metadata or [] for k, v in entry.items()]


def _execute(client, ref_id: str, sql: str, headers=None) -> DataResponse:
    kwargs = {"headers": headers} if headers else {}
    try:
        df = client.query(query=sql, language="sql", mode="pandas", **kwargs)
    except InfluxDB3ClientQueryError as e:
        # the client wraps the Flight error; its type survives only as the context
        if isinstance(e.__cause__ or e.__context__, pyarrow.flight.FlightUnavailableError) or (
            "unavailable" in str(e).lower()
        ):
            return DataResponse(error=TransportError(f"InfluxDB request failed: {e}"))
        return DataResponse(error=ServerError(str(e)))

    if not isinstance(df, pd.DataFrame):
        df = pd.DataFrame(df)
    logger.debug("Influxdb SQL query", ref_id=ref_id, rows=len(df))
    df.attrs.update({"name": ref_id, "ref_id": ref_id, "labels": {}, "executed_query_string": sql})
    return DataResponse(frames=[df])
