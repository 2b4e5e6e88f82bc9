"""deltaq - delta index coordination for Sphinx-style search indices."""

__version__ = "0.4.0"
