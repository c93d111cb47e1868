"""
BikeLedger — Ownership-Scoped Vehicle Lifecycle Engine
=======================================================
Tracks bicycles and their components: which parts are mounted where,
how far each bike and part has travelled, when they were serviced, and
who has owned them.  Every operation is scoped to the requesting user and
runs as a single serializable transaction.

Package layout::

    bikeledger/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Patchable fields, paging, time helpers
    ├── errors.py          # Typed failure taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + retrying unit of work
    │   └── models.py      # All ORM models (8 tables)
    ├── engine/
    │   ├── units.py       # km ↔ mi conversion
    │   └── stats.py       # Pure statistics arithmetic
    ├── services/
    │   ├── bike_service.py         # Bike registry
    │   ├── part_service.py         # Part registry
    │   ├── installation_service.py # Install ledger
    │   ├── active_bike_service.py  # Per-user active bike
    │   ├── settings_service.py     # Per-user unit preference
    │   ├── kilometrage_service.py  # Distance log + cascade
    │   ├── maintenance_service.py  # Service records
    │   ├── transfer_service.py     # Ownership transfers
    │   ├── stats_service.py        # Statistics reads
    │   └── serializers.py          # ORM → JSON in the caller's unit
    └── api/
        ├── main.py        # FastAPI app + error mapping
        ├── deps.py        # JWT identity, engine, config
        └── routes/        # /bikes, /parts and /settings endpoints
"""

__version__ = "0.1.0"
