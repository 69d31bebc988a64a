"""Cross-cutting FastAPI helpers shared by the gateway services."""
