"""Core types shared across tooldex components."""
