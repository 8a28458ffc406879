# Schemas package init
"""
NoteFlow Backend — Pydantic Schemas Package
"""
