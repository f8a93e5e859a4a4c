"""Command line and server entry points for convoy."""
