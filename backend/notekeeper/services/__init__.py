# Services package init
"""
NoteKeeper Backend — Services Layer
=====================================

What:  Store adapters and business logic between routes (HTTP) and storage.
How:   Adapters wrap one backing store each; services compose adapters and
       receive them from the ServiceContainer (`notekeeper.container`).

Service Inventory:
    Store adapters
    - ObjectStore (blob_store):        namespaced blob storage
    - MessageQueue (message_queue):    at-least-once queue on the database
    - StatusStore (status_store):      archive job status records

    Archive jobs
    - ArchiveBuilder:      source namespace → one zip object
    - ArchiveDispatcher:   validate owner, record Queued, publish request
    - ArchiveWorker:       process one request through the state machine
    - StatusQueryService:  read-only status projections
    - ArchiveService:      download / list / delete finished archives

    Notes
    - NoteService:         note CRUD and owner deletion
    - AttachmentService:   attachment upload / download / list / delete
"""
