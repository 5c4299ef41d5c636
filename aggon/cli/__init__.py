"""aggon CLI — Typer-based command-line interface.

Provides the ``aggon`` command with subcommands to plan, switch and roll
back addon generations and to inspect the generations and the store.

All output uses Rich for formatted terminal display.
"""
