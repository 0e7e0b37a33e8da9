"""Feature modules for the tailmux server."""
