"""Testflow CLI -- ``testflow`` command line (typer + rich)."""
