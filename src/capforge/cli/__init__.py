"""Command-line interface for capforge."""
