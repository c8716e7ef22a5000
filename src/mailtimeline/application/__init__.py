"""Application layer - pipeline stages, ports and use cases."""
