"""Turn orchestration: intent routing, tool execution and answer composition."""
