"""
taxdesk
=======

Filing lifecycle and CA‑assignment engine for a tax‑filing
case‑management backend.

Import structure
----------------
`import taxdesk` is intentionally cheap: nothing is imported eagerly.
Database support (*sqlmodel*) lives in :pymod:`taxdesk.db` /
:pymod:`taxdesk.store_db`, plotting (*matplotlib*) in :pymod:`taxdesk.viz`.

Sub‑modules
~~~~~~~~~~~
- :pymod:`taxdesk.models`     – ``Filing`` dataclass + status / type / priority enums
- :pymod:`taxdesk.errors`     – typed failures (``NotFound``, ``Conflict``, …)
- :pymod:`taxdesk.lifecycle`  – transition table and guard (`check_transition`)
- :pymod:`taxdesk.store`      – in‑memory filing store and directories
- :pymod:`taxdesk.store_db`   – SQL‑backed filing store and directories
- :pymod:`taxdesk.engine`     – ``FilingEngine``
- :pymod:`taxdesk.viz`        – status bar chart + lifecycle diagram

Quick start
-----------
>>> from taxdesk.engine import FilingEngine
>>> from taxdesk.models import ClientRef
>>> from taxdesk.store import MemoryClientDirectory, MemoryFilingStore, MemoryProfessionalDirectory
>>> eng = FilingEngine(MemoryFilingStore(), MemoryClientDirectory([ClientRef(5)]),
...                    MemoryProfessionalDirectory())
>>> eng.create_filing(5, "2023-2024", "individual").status
<FilingStatus.DRAFT: 'draft'>

"""

__all__ = [
    "models",
    "errors",
    "lifecycle",
    "store",
    "store_db",
    "engine",
    "viz",
]

__version__ = "0.1.0"
