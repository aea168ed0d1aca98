"""Topoforge CLI — Typer-based command-line interface.

Provides the ``topoforge`` command with subcommands for fingerprinting
build inputs, publishing artifacts to local backends, assembling a plan,
and resolving paths against an assembled plan.

All output uses Rich for formatted terminal display.
"""
