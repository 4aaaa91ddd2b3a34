"""Hub wire protocol, health probing and process supervision."""
