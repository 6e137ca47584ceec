"""Modular pieces for the programmatic OpenAPI builder."""

__all__ = [
    "constants",
    "helpers",
]
