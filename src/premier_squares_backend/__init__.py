"""
Premier Squares Backend - REST API for squares contests

This package provides a FastAPI-based web service that manages squares
contests and the bag builder winner. It enables:

- Creating contests for an event with a cost per square
- Assigning the roster of 100 participant names while a contest is new
- Starting a contest, which validates the roster and shuffles board positions
- Recording a single, write-once bag builder winner

All state lives in a document store; the service itself keeps none between
requests apart from rate-limit counters.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - contest_manager: Contest state machine, start validation and shuffle
    - winner_registry: Write-once bag builder winner
    - database: Document store (SQLite-backed) and its unavailable stand-in
    - models: Pydantic models for request validation and contest rules
    - errors: Exception hierarchy mapped to JSON error responses
    - middleware: Rate limiting, request guards and security headers
    - configuration: Config loading, environment overrides and validation
    - utils: Sanitization, number and timestamp helpers

Usage:
    Run the API server with:
        uvicorn premier_squares_backend.main:app --reload --host 0.0.0.0 --port 3001

    Or use the development script:
        uv run uvicorn premier_squares_backend.main:app --reload
"""
