"""
API server package: read-only HTTP interface over indexed messages and profiles.

No authentication or inbound rate limiting; delegates to the database layer.
"""
