"""Allow ``python -m agentpipe``."""

from agentpipe.cli import main

main()
