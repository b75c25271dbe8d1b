# influx_datasource/flux.py
import pandas as pd
import urllib3
from influxdb_client import InfluxDBClient
from influxdb_client.rest import ApiException
from mlrun.utils import logger

from . import interval as intervals
from .backend import DataQuery, DataResponse, QueryDataRequest, QueryDataResponse
from .errors import QueryParseError, ServerError, TransportError
from .models import DatasourceInfo

# columns of a Flux record that are not series labels
_RESERVED = {"_time", "_value", "_field", "_measurement", "_start", "_stop", "result", "table"}


def query(ds_info: DatasourceInfo, request: QueryDataRequest) -> QueryDataResponse:
    response = QueryDataResponse()
    client = InfluxDBClient(url=ds_info.url, token=ds_info.token, org=ds_info.organization)
    try:
        query_api = client.query_api()
        for data_query in request.queries:
            try:
                flux = interpolate(data_query, ds_info)
            except QueryParseError as e:
                response.responses[data_query.ref_id] = DataResponse(error=e)
                continue
            response.responses[data_query.ref_id] = _execute(query_api, ds_info, data_query.ref_id, flux)
    finally:
        client.close()
    return response


def interpolate(data_query: DataQuery, ds_info: DatasourceInfo) -> str:
    """Replace the v.* dashboard variables in the Flux text of `data_query`."""
    model = data_query.json if isinstance(data_query.json, dict) else {}
    flux = model.get("query") or ""
    if not flux:
        raise QueryParseError(f"query {data_query.ref_id}: Flux query text is empty")

    interval = intervals.calculate(
        data_query.time_range,
        interval_ms=data_query.interval_ms,
        max_data_points=data_query.max_data_points,
        min_interval=model.get("interval") or ds_info.time_interval,
    )
    if data_query.time_range is not None:
        flux = flux.replace("v.timeRangeStart", data_query.time_range.from_.isoformat().replace("+00:00", "Z"))
        flux = flux.replace("v.timeRangeStop", data_query.time_range.to.isoformat().replace("+00:00", "Z"))
    flux = flux.replace("v.windowPeriod", interval.text)
    flux = flux.replace("v.defaultBucket", f'"{ds_info.default_bucket}"')
    flux = flux.replace("v.organization", f'"{ds_info.organization}"')
    return flux


def _execute(query_api, ds_info: DatasourceInfo, ref_id: str, flux: str) -> DataResponse:
    try:
        tables = query_api.query(flux, org=ds_info.organization)
    except ApiException as e:
        return DataResponse(error=ServerError(e.body or f"{e.status} {e.reason}", e.status))
    except urllib3.exceptions.HTTPError as e:
        return DataResponse(error=TransportError(f"InfluxDB request failed: {e}"))

    if ds_info.max_series and len(tables) > ds_info.max_series:
        logger.warning("Max series reached, dropping remaining tables", ref_id=ref_id, max_series=ds_info.max_series)
        tables = tables[: ds_info.max_series]

    frames = [_table_to_frame(table, ref_id, flux) for table in tables]
    if not frames:
        empty = pd.DataFrame({"time": pd.Series([], dtype="datetime64[ns, UTC]")})
        empty.attrs.update({"name": ref_id, "ref_id": ref_id, "labels": {}, "executed_query_string": flux})
        frames = [empty]
    return DataResponse(frames=frames)


def _table_to_frame(table, ref_id: str, flux: str) -> pd.DataFrame:
    records = table.records
    df = pd.DataFrame(
        [(record.get_time(), record.get_value()) for record in records],
        columns=["time", "value"],
    )
    labels = {}
    field = ""
    if records:
        labels = {k: v for k, v in records[0].values.items() if k not in _RESERVED}
        field = records[0].values.get("_field") or ""
    name = field
    if labels:
        name = f"{field} {{{', '.join(f'{k}: {labels[k]}' for k in sorted(labels))}}}"
    df.attrs.update({"name": name, "ref_id": ref_id, "labels": labels, "executed_query_string": flux})
    return df
