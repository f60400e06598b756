"""Frontends - user interfaces for thinkrelay.

Submodules:
    cli/    Command-line interface
"""
