"""Tests for claude-relay."""
