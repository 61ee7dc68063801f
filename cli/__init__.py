"""Command-line interface for the novel factory."""
