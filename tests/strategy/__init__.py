"""Tests for the deployment strategies."""
