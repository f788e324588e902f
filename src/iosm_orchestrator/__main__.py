"""Allow ``python -m src.iosm_orchestrator``."""

from src.iosm_orchestrator.cli import app

app()
