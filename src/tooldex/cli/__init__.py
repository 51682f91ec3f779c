"""Command-line interface for tooldex."""
