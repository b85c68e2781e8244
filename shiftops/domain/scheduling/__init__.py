"""
Scheduling Domain - recurring shifts

This domain owns master shifts, their recurrence rules and per-date exceptions.

Structure:
```
shiftops/domain/scheduling/
├── __init__.py
├── calendar_math.py       # Date normalization (UTC midnight) and stepping
├── recurrence.py          # Rule validation and raw occurrence generation
├── overlay.py             # Exception overrides applied on raw occurrences
├── occurrence_id.py       # "<masterId>_<YYYY-MM-DD>" identifiers
├── errors.py              # Domain errors (mapped to HTTP in main.py)
├── schemas.py             # Request/response schemas
├── repository.py          # Tenant-scoped database queries and writes
├── series_mutator.py      # single / this_and_future / series mutations
├── conflict_detector.py   # Operator double-booking scan (advisory)
├── service.py             # Business logic used by the router
└── router.py              # /shifts endpoints
```

DATE POLICY:
Every date handled here is a calendar date normalized to UTC midnight.
Naive datetimes are read as UTC, aware datetimes are converted to UTC first.
Two dates are the same occurrence iff they are equal after normalization.

CONSISTENCY:
- Occurrences are never persisted; they are expanded per request window.
- Multi-row series mutations are applied in one transaction.
- Conflict detection only reads and reports; it does not reserve slots.
"""
