"""Command line tools for heimdizzy."""
