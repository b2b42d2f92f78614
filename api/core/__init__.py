"""
Data-access core shared by every feature.

`core/` owns the database wiring: configuration, dialect translation,
statement splitting, the connection manager, the query API (`core.db`) and
schema bootstrap. Feature packages only ever call `core.db`; they keep their
own SQL and business logic and never open connections themselves.
"""
