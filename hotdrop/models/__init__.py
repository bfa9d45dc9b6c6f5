"""Data models shared by the core components."""
