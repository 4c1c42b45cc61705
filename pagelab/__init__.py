"""pagelab: variant assignment and batched telemetry for marketing pages."""

__version__ = "0.1.0"
