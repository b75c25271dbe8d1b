# influx_datasource/api.py
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pandas as pd

from .backend import DataQuery, PluginContext, QueryDataRequest, TimeRange
from .service import Service
from .settings import settings_from_env

# one service per process keeps the instance cache warm across calls
_service = None


def get_service() -> Service:
    global _service
    if _service is None:
        _service = Service()
    return _service


def query_frames(
    query: str,
    *,
    env: str = "DEV",
    ref_id: str = "A",
    time_range: Optional[TimeRange] = None,
    service: Optional[Service] = None,
) -> List[pd.DataFrame]:
    """
    Run a raw query against the datasource configured by INFLUX_<ENV>_* and return its frames.

    `query` is InfluxQL, Flux or SQL depending on INFLUX_<ENV>_VERSION. Macros
    such as $timeFilter use `time_range`, the last hour when omitted.
    """
    if time_range is None:
        now = datetime.now(timezone.utc)
        time_range = TimeRange(from_=now - timedelta(hours=1), to=now)

    request = QueryDataRequest(
        plugin_context=PluginContext(datasource_instance_settings=settings_from_env(env)),
        queries=[
            DataQuery(
                ref_id=ref_id,
                json={"rawQuery": True, "query": query, "rawSql": query},
                time_range=time_range,
            )
        ],
    )
    response = (service or get_service()).query_data(request).responses[ref_id]
    if response.error is not None:
        raise response.error
    return response.frames


def read_df(query: str, *, env: str = "DEV", **kwargs) -> pd.DataFrame:
    """Like `query_frames`, concatenated into one DataFrame with a `series` column."""
    frames = query_frames(query, env=env, **kwargs)
    parts = [frame.assign(series=frame.attrs.get("name", "")) for frame in frames]
    return pd.concat(parts, ignore_index=True) if parts else pd.DataFrame()
