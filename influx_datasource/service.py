# influx_datasource/service.py
import threading
from datetime import datetime, timezone
from typing import Optional

import pandas as pd
from mlrun.utils import logger

from . import flux, fsql, influxql
from .backend import (
    CheckHealthRequest,
    CheckHealthResult,
    DataQuery,
    HealthStatus,
    InstanceManager,
    PluginContext,
    QueryDataRequest,
    QueryDataResponse,
    StreamRequest,
    StreamResponse,
    StreamStatus,
)
from .errors import InfluxDatasourceError, InstanceResolutionError, UnknownVersionError
from .models import VERSION_FLUX, VERSION_INFLUXQL, VERSION_SQL, DatasourceInfo
from .settings import new_instance_settings

HEALTHCHECK_REF_ID = "healthcheck"
STREAM_PATH = "stream"


class Service:
    """
    Datasource plugin entry point called by the host.

    Resolves the cached `DatasourceInfo` of the datasource a request targets
    and routes the request to the InfluxQL, Flux or SQL adapter.
    """

    def __init__(self, instance_manager: Optional[InstanceManager] = None, http_client_factory=None):
        self.im = instance_manager or InstanceManager(new_instance_settings(http_client_factory))

    def query_data(self, req: QueryDataRequest) -> QueryDataResponse:
        ds_info = self._get_ds_info(req.plugin_context)
        logger.info(f"Making a {ds_info.version} type query", queries=len(req.queries))

        if ds_info.version == VERSION_FLUX:
            return flux.query(ds_info, req)
        if ds_info.version == VERSION_INFLUXQL:
            if ds_info.exemplar_trace_id_destinations:
                self._query_exemplars(ds_info, req)
            return influxql.query(ds_info, req)
        if ds_info.version == VERSION_SQL:
            return fsql.query(ds_info, req)
        raise UnknownVersionError(f"unknown influxdb version: {ds_info.version}")

    def _query_exemplars(self, ds_info: DatasourceInfo, req: QueryDataRequest):
        # exemplar failures never reach the primary response
        try:
            exemplars = influxql.query_exemplar_data(ds_info, req)
        except InfluxDatasourceError as e:
            logger.warning("Influxdb exemplar query failed", error=str(e))
            return []
        logger.debug("Influxdb exemplars fetched", count=len(exemplars))
        return exemplars

    def _get_ds_info(self, plugin_context: PluginContext) -> DatasourceInfo:
        instance = self.im.get(plugin_context)
        if not isinstance(instance, DatasourceInfo):
            raise InstanceResolutionError("failed to cast datasource info")
        return instance

    # ----- health -----
    def check_health(self, req: CheckHealthRequest) -> CheckHealthResult:
        try:
            ds_info = self._get_ds_info(req.plugin_context)
            if ds_info.version == VERSION_INFLUXQL:
                return self._check_influxql(ds_info, req.plugin_context)
            payload = {"query": "buckets()"} if ds_info.version == VERSION_FLUX else {"rawSql": "SELECT 1"}
            res = self.query_data(
                QueryDataRequest(
                    plugin_context=req.plugin_context,
                    queries=[DataQuery(ref_id=HEALTHCHECK_REF_ID, json=payload)],
                )
            )
        except InfluxDatasourceError as e:
            return CheckHealthResult(status=HealthStatus.ERROR, message=str(e))

        resp = res.responses.get(HEALTHCHECK_REF_ID)
        if resp is None or resp.error is not None:
            return CheckHealthResult(status=HealthStatus.ERROR, message=str(resp.error if resp else "no response"))
        return CheckHealthResult(status=HealthStatus.OK, message="datasource is working")

    def _check_influxql(self, ds_info: DatasourceInfo, plugin_context: PluginContext) -> CheckHealthResult:
        req = QueryDataRequest(
            plugin_context=plugin_context,
            queries=[DataQuery(ref_id=HEALTHCHECK_REF_ID, json={"rawQuery": True, "query": "SHOW measurements"})],
        )
        resp = influxql.query(ds_info, req).responses[HEALTHCHECK_REF_ID]
        if resp.error is not None:
            return CheckHealthResult(status=HealthStatus.ERROR, message=f"error reading InfluxDB: {resp.error}")

        count = sum(len(frame) for frame in resp.frames if "name" in frame.columns)
        return CheckHealthResult(status=HealthStatus.OK, message=f"datasource is working. {count} measurements found")

    # ----- streams -----
    def subscribe_stream(self, req: StreamRequest) -> StreamResponse:
        logger.debug("Subscribing stream", path=req.path)
        if req.path == STREAM_PATH:
            return StreamResponse(status=StreamStatus.OK)
        return StreamResponse(status=StreamStatus.PERMISSION_DENIED)

    def publish_stream(self, req: StreamRequest) -> StreamResponse:
        logger.debug("Publishing stream", path=req.path)
        return StreamResponse(status=StreamStatus.PERMISSION_DENIED)

    def run_stream(self, req: StreamRequest, sender, cancel: threading.Event, interval: float = 1.0):
        """
        Push a one-row `time`/`values` frame every `interval` seconds until `cancel` is set.

        `sender` is any callable accepting a DataFrame. Cancellation is checked
        once per tick and returns before anything is sent for that tick.
        """
        logger.debug("Running stream", path=req.path)
        counter = 0
        while not cancel.wait(interval):
            frame = pd.DataFrame({"time": [datetime.now(timezone.utc)], "values": [10 * (counter % 2 + 1)]})
            frame.attrs["name"] = "response"
            counter += 1
            try:
                sender(frame)
            except Exception as e:
                logger.error("Error sending frame", path=req.path, error=str(e))
        logger.info("Context done, finish streaming", path=req.path)
