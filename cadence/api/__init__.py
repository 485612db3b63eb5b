"""HTTP surface: FastAPI app, routes and request/response schemas."""
