"""Phase-orchestrated backend generation driven by LLM function calling."""

__version__ = "0.1.0"
