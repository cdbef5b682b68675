"""DataWeave: immutable provenance records for AI-agent computation"""

__version__ = "0.1.0"
