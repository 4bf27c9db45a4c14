"""vendorsync CLI — Typer-based command-line interface.

Provides the ``vendorsync`` command with subcommands for syncing a
manifest, inspecting and clearing the shared content cache, and printing
the version.

All output uses Rich for formatted terminal display.
"""
