"""AgriAI: document ingestion queue, retrieval and grounded answers."""

__version__ = "0.1.0"
