"""Taskiq broker for the durable notification retry queue."""

from gloria_service.infra.tasks.broker import broker, get_broker, start_taskiq, stop_taskiq

__all__ = ["broker", "get_broker", "start_taskiq", "stop_taskiq"]
