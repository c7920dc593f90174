"""claude-relay - chat bridge that routes messages to Claude CLI agents."""

__version__ = "0.1.0"
