"""
Serving — FastAPI application for the document QA service.

Run with ``uvicorn docrag.serving.app:app``.
"""
