"""agentsched — scheduled LLM agents with a resilient tool loop."""

__version__ = "0.1.0"
