"""Ports package."""

from .control_utility_port import CommandOutput, ControlUtilityPort
from .holder_discovery_port import HolderDiscoveryStrategy, ResourceId
from .pipeline_launcher_port import PipelineLauncherPort, PipelineProcess
from .preview_source_port import PreviewSourcePort

__all__ = [
    'CommandOutput',
    'ControlUtilityPort',
    'HolderDiscoveryStrategy',
    'ResourceId',
    'PipelineLauncherPort',
    'PipelineProcess',
    'PreviewSourcePort',
]
