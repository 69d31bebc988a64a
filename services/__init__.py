"""Service packages deployed from this repository."""
