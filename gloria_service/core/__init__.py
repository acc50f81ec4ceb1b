"""Core building blocks: settings, exceptions, database primitives."""
