"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text segmentation with word, character or sentence policies
- Embedding generation through Ollama
- FAISS vector storage and batched index writes
- Semantic retrieval and grounded answer synthesis
"""
