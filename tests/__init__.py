"""Unit tests for the PeerVault e2e harness; no live Obsidian required."""
