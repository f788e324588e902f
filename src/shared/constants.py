"""Shared constants used across the engine."""
from __future__ import annotations

# Application version
VERSION: str = "1.0.0"

# Service name used in structured log entries
SERVICE_NAME: str = "iosm-engine"
