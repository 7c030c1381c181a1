"""kbchat - retrieval-augmented chat backend for a local Ollama model."""

__version__ = "0.1.0"
