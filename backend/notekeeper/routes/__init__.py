# Routes package init
"""
NoteKeeper Backend — API Routes Package
=========================================

Route Inventory:
    - notes.py:        /api/notes, /api/notes/{note_id}
    - attachments.py:  /api/notes/{note_id}/attachments[/{attachment_id}]
    - archives.py:     /api/notes/{note_id}/archives[...]
    - health.py:       /health
    - headers.py:      Location and Content-Disposition values for Unicode ids

Design Principle:
    Routes are THIN. They pull services off the container, call them, and set
    status codes and headers. Errors propagate as NoteKeeperError subclasses
    to the handlers registered in main.py.
"""
