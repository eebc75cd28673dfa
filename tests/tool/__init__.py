"""Tests for the heimdizzy command line tool."""
