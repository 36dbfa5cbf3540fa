"""Command line interface for automation-bridge."""
