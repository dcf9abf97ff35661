"""Home-hub event pipeline and AI automation suggestion services."""

__version__ = "0.4.0"
