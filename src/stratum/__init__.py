"""Stratum: register, read and finalize resources with a deployment engine."""

from stratum.output import UNKNOWN, Output
from stratum.resource import (
    ComponentResource,
    CustomResource,
    CustomResourceOptions,
    ProviderResource,
    Resource,
    ResourceOptions,
)
from stratum.runtime.stack import run, run_program

__all__ = [
    "UNKNOWN",
    "Output",
    "Resource",
    "CustomResource",
    "ComponentResource",
    "ProviderResource",
    "ResourceOptions",
    "CustomResourceOptions",
    "run",
    "run_program",
]
