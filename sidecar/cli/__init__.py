"""Sidecar CLI — Click-based command interface."""
