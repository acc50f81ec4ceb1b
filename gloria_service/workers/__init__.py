"""Background workers consuming the taskiq broker."""
