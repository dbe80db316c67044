"""
Pulumi modules for the CockroachDB node lifecycle handlers
Function-based, one module per concern
"""

from .cli_layer import LayerBuildCache, create_cli_layer
from .hooks import create_lifecycle_hooks

__all__ = [
    "LayerBuildCache",
    "create_cli_layer",
    "create_lifecycle_hooks"
]
