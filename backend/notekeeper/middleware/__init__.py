# Middleware package init
"""
NoteKeeper Backend — Middleware Package
=========================================

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID: generate or accept the correlation ID
    2. Logging: log method, path, status and duration under that ID

    Responses travel back through the chain in reverse, so the request ID
    header is attached and the logged duration covers the whole handler.
"""
