"""HTTP API for the Relay Stage application."""
