from .base import RuntimeBackend, RuntimeStatus, Viewport, resolve_viewport
from .manager import RuntimeHandle, RuntimeManager
from .manifest import Manifest, parse_manifest, resolve_entry_path
from .sequencing import LinearSequencingEngine, SequencingBridge, SequencingEngine

__all__ = [
    "LinearSequencingEngine",
    "Manifest",
    "RuntimeBackend",
    "RuntimeHandle",
    "RuntimeManager",
    "RuntimeStatus",
    "SequencingBridge",
    "SequencingEngine",
    "Viewport",
    "parse_manifest",
    "resolve_entry_path",
    "resolve_viewport",
]
