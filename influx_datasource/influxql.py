# influx_datasource/influxql.py
from typing import List
from urllib.parse import urlsplit, urlunsplit

import pandas as pd
import requests
from mlrun.utils import logger

from . import response_parser
from .backend import DataResponse, QueryDataRequest, QueryDataResponse
from .errors import InvalidHttpModeError, QuerySyntaxError, TransportError
from .models import DEFAULT_RETENTION_POLICY, DatasourceInfo, Exemplar, ExemplarSetting, Query
from .settings import is_development

EXEMPLAR_SUFFIX = '_exemplar"'


def query(ds_info: DatasourceInfo, request: QueryDataRequest) -> QueryDataResponse:
    """
    Run every query of the batch against the InfluxQL endpoint, one after the other.

    Parse, build and request construction errors abort the batch; transport
    and server errors are stored in the slot of the query that caused them.
    """
    response = QueryDataResponse()

    for data_query in request.queries:
        influx_query = Query.parse(data_query, ds_info)
        raw_query = influx_query.build()

        influx_query.ref_id = data_query.ref_id
        influx_query.raw_query = raw_query

        if is_development():
            logger.info("Influxdb query", raw_query=raw_query)

        prepared = create_request(ds_info, raw_query, influx_query.policy)
        try:
            response.responses[influx_query.ref_id] = execute(ds_info, influx_query, prepared)
        except TransportError as e:
            response.responses[influx_query.ref_id] = DataResponse(error=e)

    return response


def rewrite_as_exemplar_query(raw_query: str) -> str:
    """
    Point `raw_query` at the sibling `_exemplar` measurement.

    This is a textual rewrite: the first `FROM` (case-sensitive) is located,
    the token after it up to the next space is taken as the table name, and
    the original SELECT clause is replaced by `SELECT *`. Everything after the
    table name is kept verbatim.
    """
    from_index = raw_query.find("FROM")
    if from_index == -1:
        raise QuerySyntaxError("keyword 'FROM' not found in query")

    suffix = raw_query[from_index + len("FROM") + 1:]
    end_of_table_name = suffix.find(" ")
    if end_of_table_name == -1:
        raise QuerySyntaxError("space not found after table name in query")

    table_name = suffix[:end_of_table_name]
    if table_name.endswith('"'):
        table_name = table_name[:-1]
    remainder = suffix[end_of_table_name:]

    return "SELECT * FROM " + table_name + EXEMPLAR_SUFFIX + remainder


def query_exemplar_data(ds_info: DatasourceInfo, request: QueryDataRequest) -> List[Exemplar]:
    exemplars = []

    for data_query in request.queries:
        influx_query = Query.parse(data_query, ds_info)
        raw_query = influx_query.build()
        exemplar_query = rewrite_as_exemplar_query(raw_query)

        logger.info("Influxdb exemplar query", exemplar_query=exemplar_query)
        influx_query.ref_id = data_query.ref_id
        influx_query.raw_query = exemplar_query

        prepared = create_request(ds_info, exemplar_query, influx_query.policy)
        resp = execute(ds_info, influx_query, prepared)
        if resp.error is not None:
            raise resp.error

        exemplars.extend(transform_to_exemplars(resp.frames, ds_info.exemplar_trace_id_destinations))

    logger.debug("Influxdb exemplars", count=len(exemplars))
    return exemplars


def transform_to_exemplars(frames: List[pd.DataFrame], destinations: List[ExemplarSetting]) -> List[Exemplar]:
    exemplars = []
    for frame in frames:
        if frame.empty or "time" not in frame.columns:
            continue

        value_column = _value_column(frame)
        destination = next((d for d in destinations if d.name in frame.columns), None)
        skip = {"time", value_column, destination.name if destination else None}
        label_columns = [c for c in frame.columns if c not in skip]

        for record in frame.to_dict(orient="records"):
            labels = dict(frame.attrs.get("labels") or {})
            labels.update({c: str(record[c]) for c in label_columns if pd.notna(record[c])})
            trace_id = None
            if destination is not None and pd.notna(record[destination.name]):
                trace_id = str(record[destination.name])
            exemplars.append(
                Exemplar(
                    time=record["time"].to_pydatetime(),
                    value=record[value_column] if value_column else None,
                    trace_id=trace_id,
                    datasource_uid=destination.datasource_uid if destination else "",
                    labels=labels,
                )
            )
    return exemplars


def _value_column(frame: pd.DataFrame):
    if "value" in frame.columns:
        return "value"
    for column in frame.columns:
        if column != "time" and pd.api.types.is_numeric_dtype(frame[column]):
            return column
    return None


def create_request(ds_info: DatasourceInfo, query_str: str, retention_policy: str) -> requests.PreparedRequest:
    parts = urlsplit(ds_info.url)
    # query parameters on the configured url are kept; requests appends ours after them
    url = urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip("/") + "/query", parts.query, ""))

    http_mode = ds_info.http_mode
    if http_mode not in ("GET", "POST"):
        raise InvalidHttpModeError()

    params = {"db": ds_info.db_name, "epoch": "ms"}
    # without rp InfluxDB applies the database's own default policy,
    # which is not necessarily named "default"
    if retention_policy and retention_policy != DEFAULT_RETENTION_POLICY:
        params["rp"] = retention_policy

    if http_mode == "GET":
        params["q"] = query_str
        req = requests.Request("GET", url, params=params)
    else:
        req = requests.Request(
            "POST",
            url,
            params=params,
            data={"q": query_str},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    if ds_info.http_client is not None:
        prepared = ds_info.http_client.prepare_request(req)
    else:
        prepared = req.prepare()

    logger.debug("Influxdb request", url=prepared.url)
    return prepared


def execute(ds_info: DatasourceInfo, influx_query: Query, request: requests.PreparedRequest) -> DataResponse:
    try:
        res = ds_info.http_client.send(request, timeout=ds_info.timeout)
    except requests.RequestException as e:
        raise TransportError(f"InfluxDB request failed: {e}") from e

    try:
        return response_parser.parse(
            res.content,
            res.status_code,
            influx_query,
            max_series=ds_info.max_series,
            reason=res.reason or "",
        )
    finally:
        res.close()
