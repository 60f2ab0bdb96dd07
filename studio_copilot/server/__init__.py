"""
Studio Copilot Server Package.

This package contains the web server exposing the orchestration core.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration settings and constants.
    exception_handlers: Mapping of domain errors to structured JSON responses.
    schemas: Pydantic schemas for API request/response validation.
    services: Service layer wiring stores, engine and checkpoints.
"""
