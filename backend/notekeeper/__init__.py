"""
NoteKeeper Backend — Application Package Initializer
======================================================

What: Note-taking API with file attachments and asynchronous
      "zip my attachments" jobs, plus the queue worker that runs them.

Architecture Note:

    ┌─────────────────────────────────────┐      ┌──────────────────────┐
    │           Routes (API Layer)        │      │  worker.py (process) │
    ├─────────────────────────────────────┤      ├──────────────────────┤
    │         Services (Business Logic)   │◀─────│  ArchiveWorker       │
    ├─────────────────────────────────────┤      └──────────────────────┘
    │  Store adapters: DB / blob / queue  │
    │  / status table                     │
    └─────────────────────────────────────┘

    Both processes build their store clients once through
    `notekeeper.container.build_container()`.
"""

__version__ = "1.0.0"
