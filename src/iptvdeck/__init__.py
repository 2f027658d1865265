"""Terminal operator console for an IPTV distribution panel."""

__version__ = "0.3.0"

__all__ = ["__version__"]
