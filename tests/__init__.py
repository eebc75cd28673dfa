"""Tests for heimdizzy."""
