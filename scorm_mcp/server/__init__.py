from .router import RegisteredTool, ToolRouter
from .server import Server
from .stdio import stdio_server

__all__ = ["RegisteredTool", "Server", "ToolRouter", "stdio_server"]
