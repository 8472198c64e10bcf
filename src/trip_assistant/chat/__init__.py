"""Chat assistant: tools, model streaming and turn orchestration."""
