"""
Bubble Entity Migration

Batch migration toolkit for moving the questionnaire platform's records out of
the legacy Bubble backend and into a relational database.

Supports:
- Cursor-paginated extraction from the Bubble Data API
- A durable source -> destination ID ledger for idempotent, resumable runs
- Per-entity transforms that resolve foreign keys through the ledger
- Dependency-ordered runs with a second pass for forward references
- Dry runs to preview scope before writing
"""

__version__ = "0.1.0"
