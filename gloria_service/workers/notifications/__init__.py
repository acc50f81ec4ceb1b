"""Durable notification retry tasks."""
