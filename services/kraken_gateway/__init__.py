"""HTTP gateway exposing the Kraken spot REST API."""
