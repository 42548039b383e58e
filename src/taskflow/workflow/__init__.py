"""Task lifecycle and workflow core.

This package holds the data model, the transactional store and the
components that mutate tasks (engine, relationship graph, time ledger,
delegation, recurrence) together with the read-side project aggregator.
"""
