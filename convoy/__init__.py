"""
Convoy position-synchronization and session-lifecycle engine.

Modules:
- config: tunables, paths and environment lookups
- geo: great-circle distance, bounding boxes
- colors: participant palette and color assignment
- models: store documents and position samples
- geofilter: upload throttling
- trail: leader trail recording and gap splitting
- roster: roster snapshot, ordering, ghosts, admission
- camera: follow / focus / free camera state machine
- annotations: host points of interest
- session: the per-client session lifecycle
- identity: per-device participant id
- errors: exception hierarchy
- sources: position sources (device push, route replay)
- routing: geocoding and routing for simulated drives
- store, store_pg, bus_nats: shared document store implementations
"""

__version__ = "1.0.0"
