# scorm_mcp/engine/__main__.py
"""Engine process entry point: `python -m scorm_mcp.engine`, spawned by the process bridge."""

import os
import sys

import anyio
from mcp.server.fastmcp.utilities.logging import configure_logging, get_logger

from scorm_mcp.bridge.channel import CHANNEL_FDS_ENV, channel_from_fds
from scorm_mcp.bridge.process_bridge import SETTINGS_ENV
from scorm_mcp.runtime.manager import RuntimeManager
from scorm_mcp.settings import Settings
from .host import EngineHost

logger = get_logger("scorm_mcp.engine")


def load_settings() -> Settings:
    raw = os.environ.get(SETTINGS_ENV)
    if raw:
        return Settings.model_validate_json(raw)
    return Settings()


async def serve(settings: Settings, read_fd: int, write_fd: int) -> None:
    channel = channel_from_fds(read_fd, write_fd)
    async with RuntimeManager(settings) as runtime:
        await EngineHost(runtime, channel).serve()


def main() -> int:
    fds = os.environ.get(CHANNEL_FDS_ENV, "")
    try:
        read_fd, write_fd = (int(part) for part in fds.split(","))
    except ValueError:
        print(f"{CHANNEL_FDS_ENV} must name the channel file descriptors", file=sys.stderr)
        return 2

    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info("Engine starting (pid %s)", os.getpid())
    anyio.run(serve, settings, read_fd, write_fd)
    return 0


if __name__ == "__main__":
    sys.exit(main())
