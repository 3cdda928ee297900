# Middleware package init
"""
Catalog Backend — Middleware Package
====================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID: correlation ID, available to every log line of the request
    2. Logging: method, path, status and duration, tagged with that ID
    3. GZip / CORS: Starlette built-ins, registered in main.py

    Responses travel the chain in reverse, so the X-Request-ID header is set
    on every response, error responses from the exception handlers included.
"""
