"""Coloring Page Studio — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request/response
models, the image request orchestrator and the payment flow.

Modules
-------
main
    FastAPI application factory with all route handlers and the ``main()``
    CLI entry point.
models
    Pydantic models for API request and response validation.
orchestrator
    Generate/edit request handling and per-image persistence.
billing
    Stripe Checkout sessions and webhook crediting.
"""
