"""Python client and command-line interface for the auto-update API."""
