"""Command line interface for vsnap."""
