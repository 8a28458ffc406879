"""
NoteFlow Backend — Application Package Initializer
====================================================

Layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │    Services (Upload, Compression)   │  ← Orchestration, validation
    ├─────────────────────────────────────┤
    │   Ghostscript adapter (subprocess)  │  ← External tool boundary
    ├─────────────────────────────────────┤
    │   Schemas & Config (pydantic)       │  ← Contracts and settings
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
