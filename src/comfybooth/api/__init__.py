"""ComfyBooth — FastAPI REST API layer.

Modules
-------
main
    ``create_app()`` application factory with all route handlers and the
    ``main()`` CLI entry point.
models
    Pydantic models for API request and response validation.
artifacts
    Upload-directory storage and artifact resolution helpers.
store
    File-backed history records and runtime settings.
auth
    Bearer-token dependencies.
dependencies
    Shared FastAPI dependencies.
"""
