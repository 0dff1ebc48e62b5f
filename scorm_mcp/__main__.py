import sys

from scorm_mcp.cli import main

sys.exit(main())
