"""Command line interface for gloria-notifications."""
