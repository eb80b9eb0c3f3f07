"""Command-line interface for parsing, validating and applying task filters."""
