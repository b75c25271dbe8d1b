# influx_datasource/errors.py
import mlrun.errors


class InfluxDatasourceError(mlrun.errors.MLRunBaseError):
    """Base class for every error raised by the datasource plugin."""


class QueryParseError(InfluxDatasourceError, mlrun.errors.MLRunInvalidArgumentError):
    """The host query payload does not have the expected shape."""


class UnsupportedQueryPartError(QueryParseError):
    """A select/group-by part references a function the grammar does not know."""


class InvalidHttpModeError(InfluxDatasourceError, mlrun.errors.MLRunInvalidArgumentError):
    def __init__(self, *args, **kwargs):
        super().__init__(*(args or ("'httpMode' should be either 'GET' or 'POST'",)), **kwargs)


class QuerySyntaxError(InfluxDatasourceError, mlrun.errors.MLRunInvalidArgumentError):
    """Raised by the exemplar rewrite when the FROM clause cannot be located."""


class SettingsError(InfluxDatasourceError, mlrun.errors.MLRunInvalidArgumentError):
    pass


class UnknownVersionError(InfluxDatasourceError, mlrun.errors.MLRunInvalidArgumentError):
    pass


class TransportError(InfluxDatasourceError, mlrun.errors.MLRunRuntimeError):
    """Network level failure while talking to InfluxDB."""


class ServerError(InfluxDatasourceError, mlrun.errors.MLRunRuntimeError):
    """InfluxDB answered, but with a non-2xx status or an error payload."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class InstanceResolutionError(InfluxDatasourceError, mlrun.errors.MLRunRuntimeError):
    pass
