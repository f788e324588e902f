"""Quality gate evaluation for the IOSM engine.

Provides threshold-based gate evaluation for each phase and Markdown
reporting for gate results and completed runs.
"""

__version__ = "1.0.0"
