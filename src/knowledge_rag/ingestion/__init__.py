"""
Ingestion: extraction, chunking, and embedding of uploaded documents.

This module turns raw uploads (PDF, Word, text, web pages, …) into
ordered chunks with one vector each, ready to be persisted by the
knowledge base.
"""
