"""Maintainer inbox: GitHub issue/PR sync and next-work-item recommendations."""

__version__ = "0.1.0"
