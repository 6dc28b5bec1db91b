"""Core infrastructure shared by the store, the server and the CLI."""
