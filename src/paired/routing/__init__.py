"""Free-text classification and forwarding to agents through the hub."""
