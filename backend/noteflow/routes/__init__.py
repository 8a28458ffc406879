# Routes package init
"""
NoteFlow Backend — API Routes Package
=======================================

Route Inventory:
    - uploads.py:  POST /api/uploads            (validate, store, compress PDFs)
                   GET  /api/files/{path}       (download a stored file)
    - health.py:   GET  /health                 (service + Ghostscript status)

Routes stay thin: read the request, call a service, return the schema.
Errors are raised as NoteFlowError subclasses and formatted by the
handlers registered in main.py.
"""
