"""
CLI package for the Bulk Data Exchange Pipeline

Provides command-line interface for running the pipeline and managing jobs.
"""

from .main import main, cli

__all__ = ["main", "cli"]
