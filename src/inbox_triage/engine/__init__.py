"""Thread triage engine.

This package provides the stateful side of the triage engine:
- Thread model and tolerant record parsing
- Workflow status resolution and single-thread workflow actions
- Annotation pipeline and view filter/sorter
- Thread cache with pagination and live-update debouncing
- Sync orchestrator (mutex, throttle, visibility trigger)
- Bulk operation batcher and selection set

Modules are imported directly (e.g. `from inbox_triage.engine.sync import
SyncOrchestrator`); the classifier package depends on engine.threads.
"""
