"""
Capability providers, the registry that aggregates them, and tool dispatch
"""

from .base import NAMESPACE_SEPARATOR, CapabilityProvider, CapabilityTool, namespaced
from .dispatch import ToolDispatcher, parse_arguments, serialize_result
from .external import ExternalProvider, ProviderState, ServerConfig, decode_tool_result
from .filesystem import FileSystemProvider
from .git import GitCommandError, GitProvider
from .registry import CapabilityRegistry

__all__ = [
    "NAMESPACE_SEPARATOR",
    "CapabilityProvider",
    "CapabilityRegistry",
    "CapabilityTool",
    "ExternalProvider",
    "FileSystemProvider",
    "GitCommandError",
    "GitProvider",
    "ProviderState",
    "ServerConfig",
    "ToolDispatcher",
    "decode_tool_result",
    "namespaced",
    "parse_arguments",
    "serialize_result",
]
