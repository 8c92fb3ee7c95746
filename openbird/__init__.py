"""openbird - a shell agent loop for local Ollama models."""

__version__ = "0.1.0"

from openbird.config import Config
from openbird.main import main

__all__ = ["Config", "main", "__version__"]
