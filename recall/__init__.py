"""
Semantic retrieval over chat messages: embeddings, similarity search and
vector backfill on top of a SQLite message store.
"""
