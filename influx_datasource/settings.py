# influx_datasource/settings.py
import json
import os
from typing import Callable, Optional

import mlrun
import requests

from .backend import DataSourceInstanceSettings
from .errors import SettingsError
from .models import (
    DEFAULT_HTTP_MODE,
    DEFAULT_MAX_SERIES,
    VERSION_INFLUXQL,
    DatasourceInfo,
    ExemplarSetting,
)

DEV_ENV_VAR = "INFLUX_DATASOURCE_ENV"


def is_development() -> bool:
    return os.environ.get(DEV_ENV_VAR, "").lower() in ("dev", "development")


def create_http_client(settings: DataSourceInstanceSettings, token: str = "") -> requests.Session:
    """Shared session of one datasource instance; credentials are attached here."""
    session = requests.Session()
    if token:
        session.headers["Authorization"] = f"Token {token}"
    elif settings.basic_auth_enabled and settings.basic_auth_user:
        password = settings.decrypted_secure_json_data.get("basicAuthPassword", "")
        session.auth = (settings.basic_auth_user, password)
    return session


def new_instance_settings(http_client_factory: Optional[Callable] = None) -> Callable:
    """
    Return the factory the instance manager calls for every configured datasource.

    Defaults: httpMode GET, maxSeries 1000, version InfluxQL, and dbName falls
    back to the legacy top level `database` setting.
    """
    client_factory = http_client_factory or create_http_client

    def factory(settings: DataSourceInstanceSettings) -> DatasourceInfo:
        try:
            json_data = settings.json_dict()
        except ValueError as e:
            raise SettingsError(f"error reading settings: {e}") from e

        token = settings.decrypted_secure_json_data.get("token") or mlrun.get_secret_or_env("INFLUX_TOKEN") or ""

        try:
            max_series = int(json_data.get("maxSeries") or 0)
        except (TypeError, ValueError) as e:
            raise SettingsError(f"error reading settings: invalid maxSeries: {e}") from e

        timeout = json_data.get("timeout")
        return DatasourceInfo(
            url=settings.url,
            http_client=client_factory(settings, token),
            token=token,
            db_name=json_data.get("dbName") or settings.database,
            version=json_data.get("version") or VERSION_INFLUXQL,
            http_mode=json_data.get("httpMode") or DEFAULT_HTTP_MODE,
            time_interval=json_data.get("timeInterval") or "",
            default_bucket=json_data.get("defaultBucket") or "",
            organization=json_data.get("organization") or "",
            max_series=max_series or DEFAULT_MAX_SERIES,
            metadata=json_data.get("metadata") or [],
            secure_grpc=True,
            exemplar_trace_id_destinations=[
                ExemplarSetting.from_dict(d) for d in json_data.get("exemplarTraceIdDestinations") or []
            ],
            timeout=float(timeout) if timeout else None,
        )

    return factory


def settings_from_env(env: str = "DEV", uid: str = "") -> DataSourceInstanceSettings:
    """
    Build instance settings from INFLUX_<ENV>_* environment variables.

    The token is resolved through MLRun secrets first (INFLUX_<ENV>_TOKEN),
    so it never has to live in the process environment.
    """
    env = (env or "DEV").upper()
    url = os.environ.get(f"INFLUX_{env}_URL")
    if not url:
        raise SettingsError(f"Missing Influx config (env={env}). Need INFLUX_{env}_URL")

    json_data = {
        "dbName": os.environ.get(f"INFLUX_{env}_DB", ""),
        "version": os.environ.get(f"INFLUX_{env}_VERSION", ""),
        "httpMode": os.environ.get(f"INFLUX_{env}_HTTP_MODE", ""),
        "organization": os.environ.get(f"INFLUX_{env}_ORG", ""),
        "defaultBucket": os.environ.get(f"INFLUX_{env}_BUCKET", ""),
        "maxSeries": os.environ.get(f"INFLUX_{env}_MAX_SERIES", ""),
    }
    secure = {}
    token = mlrun.get_secret_or_env(f"INFLUX_{env}_TOKEN")
    if token:
        secure["token"] = token

    return DataSourceInstanceSettings(
        uid=uid or f"influx-{env.lower()}",
        name=f"influx-{env.lower()}",
        url=url,
        json_data=json.dumps(json_data),
        decrypted_secure_json_data=secure,
    )
