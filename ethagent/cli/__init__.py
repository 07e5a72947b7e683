"""Command-line interface for eth-agent."""
