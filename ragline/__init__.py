"""Segmentation, indexing and retrieval engine for grounded question answering."""
