"""Vector store module for the knowledge base.

Provides byte-bounded chunking, OpenAI embedding generation, ChromaDB
storage and the URL/text ingestion coordinator.
"""
