"""Core components of the local transfer server."""
