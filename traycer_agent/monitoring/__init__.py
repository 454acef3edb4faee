from .telemetry import TELEMETRY_PATH_ENV, TelemetryLogger

__all__ = ["TELEMETRY_PATH_ENV", "TelemetryLogger"]
