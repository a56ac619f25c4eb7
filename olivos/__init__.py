"""Shared PokeOlivos helpers used by the app, the award desk and the catalog admin."""
