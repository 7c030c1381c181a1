"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document chunking with overlap
- Embedding generation
- In-memory vector indexing (numpy or FAISS)
- Knowledge base loading
- Semantic retrieval
"""
