"""Exception hierarchy for the metrics engine."""


class MetricsEngineError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(MetricsEngineError, ValueError):
    """Invalid engine configuration; raised before any write is accepted."""


class StorageError(MetricsEngineError):
    """A storage operation failed after exhausting its retries."""


class CircuitOpenError(StorageError):
    pass


class InvalidQueryError(MetricsEngineError, ValueError):
    """A history query carried an unknown granularity or an inverted time range."""


class EngineClosedError(MetricsEngineError):
    pass
