"""
Person + product scene generation with Gemini.
"""
from .config import StudioConfig, load_config
from .orchestrator import SceneGenerator
from .session import SceneStudio, StudioSnapshot, StudioState

__all__ = [
    "StudioConfig",
    "load_config",
    "SceneGenerator",
    "SceneStudio",
    "StudioSnapshot",
    "StudioState",
]
