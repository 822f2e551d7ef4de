"""In-memory host chain and engine doubles for tests and local runs."""
