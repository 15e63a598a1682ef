"""Configuration, logging, telemetry, metrics and error types."""
