"""Domain models for the moderation engine.

Entities reference each other by id only; related records are resolved by
querying the store rather than through embedded object graphs.
"""
