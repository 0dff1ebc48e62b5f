from .host import EngineHost

__all__ = ["EngineHost"]
