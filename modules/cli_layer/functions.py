"""
Cockroach CLI Layer Functions
Lambda layer carrying the cockroach binary for the decommissioning handlers
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, Optional


class LayerBuildCache:
    """
    Caller-owned cache for the CLI layer archive

    Created once per deployment and handed to every function that declares
    a layer. The archive is built on first use and never replaced.
    """

    def __init__(self, bundle_path: str):
        self.bundle_path = bundle_path
        self._archive: Optional[pulumi.Archive] = None
        self.builds = 0

    def archive(self) -> pulumi.Archive:
        if self._archive is None:
            pulumi.log.info(f"Packaging cockroach CLI layer from {self.bundle_path}")
            self._archive = pulumi.FileArchive(self.bundle_path)
            self.builds += 1
        return self._archive


def create_cli_layer(name: str, cache: LayerBuildCache) -> Dict[str, any]:
    """
    Create a Lambda layer version for the cockroach CLI
    
    Args:
        name: Resource name prefix
        cache: Shared layer build cache
        
    Returns:
        Dict with layer resource and outputs
    """
    layer = aws.lambda_.LayerVersion(
        f"{name}-cockroach-cli",
        layer_name=f"{name}-cockroach-cli",
        code=cache.archive(),
        compatible_architectures=["x86_64"],
        compatible_runtimes=["python3.12"],
        description="cockroach CLI binary"
    )
    
    return {
        "layer": layer,
        "layer_arn": layer.arn
    }
