"""docsearch HTTP server: hybrid query processing and the FastAPI app."""
