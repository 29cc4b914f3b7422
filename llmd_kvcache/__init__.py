"""KV-cache block indexing and prefix-aware pod scoring for LLM inference."""

__version__ = "0.1.0"