"""Built-in auxiliary startup steps, run as separate processes."""
