"""Pure marketplace rules shared by the services (no I/O)."""
