"""
Serving: FastAPI application exposing ingestion and search over HTTP.

Run with any ASGI server, e.g.::

    uvicorn knowledge_rag.serving.main:app
"""
