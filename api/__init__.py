"""F3 Sidecar: JSON-RPC query server for the host node."""
