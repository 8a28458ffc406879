# Services package init
"""
NoteFlow Backend — Services Layer
===================================

Service Inventory:
    - ghostscript:     Executable discovery, argument building, process runner, probe
    - pdf_compress:    PDFCompressor, the best-effort profile × candidate search
    - file_service:    Upload validation, storage, replacement, and cleanup
    - upload_service:  Orchestrates validate → store → compress → finalize

Each module exposes a module-level singleton built from `settings`; the
classes take their collaborators as constructor arguments so tests can
build isolated instances.
"""
