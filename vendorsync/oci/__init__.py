"""Minimal OCI distribution client: references, registry API, layer handling."""
