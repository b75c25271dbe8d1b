# influx_datasource/__init__.py
from .backend import (
    CheckHealthRequest,
    CheckHealthResult,
    DataQuery,
    DataResponse,
    DataSourceInstanceSettings,
    InstanceManager,
    PluginContext,
    QueryDataRequest,
    QueryDataResponse,
    TimeRange,
)
from .influxql import create_request, rewrite_as_exemplar_query
from .models import DatasourceInfo, ExemplarSetting, Query
from .service import Service


# lazy re-exports to keep import light
def query_frames(*args, **kwargs):
    from .api import query_frames as _qf
    return _qf(*args, **kwargs)


def read_df(*args, **kwargs):
    from .api import read_df as _rd
    return _rd(*args, **kwargs)


__all__ = [
    "CheckHealthRequest",
    "CheckHealthResult",
    "DataQuery",
    "DataResponse",
    "DataSourceInstanceSettings",
    "DatasourceInfo",
    "ExemplarSetting",
    "InstanceManager",
    "PluginContext",
    "Query",
    "QueryDataRequest",
    "QueryDataResponse",
    "Service",
    "TimeRange",
    "create_request",
    "query_frames",
    "read_df",
    "rewrite_as_exemplar_query",
]
