"""IOSM shared models, protocols, constants, and utilities.

This package provides the foundational layer for the engine components:
iosm_orchestrator and quality_gate.  Process-level concerns (logging and
environment settings) live in ``src/shared/``.
"""

__version__ = "1.0.0"
