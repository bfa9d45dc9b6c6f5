"""Local file-drop and messaging server for peers on the host's hotspot."""

__version__ = "1.0.0"
