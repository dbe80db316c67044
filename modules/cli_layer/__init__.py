"""
Cockroach CLI Layer Module
Shared Lambda layer for handlers that talk to the database admin endpoint
"""

from .functions import LayerBuildCache, create_cli_layer

__all__ = ["LayerBuildCache", "create_cli_layer"]
