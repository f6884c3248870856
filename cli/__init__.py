"""Command-line interface for ClarityCheck."""
