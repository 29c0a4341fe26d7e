"""
Quote Studio - Core Application Package

This package contains the core quoting engine: quote numbering and revisions,
line-item totals, deterministic patch application for the live editing studio,
catalog key parsing and base pricing, plus the collaborators for rendering,
text structuring and similarity search.
"""

__version__ = "0.1.0"
