"""Tool-calling loop and request supervisor."""
