"""
Rule Enforcement Service package for the binder application.

This package decides whether a user may perform an action and records the
usage that rate and feature limits are counted against. It provides:

- app.main: Service wiring of configuration, logging, metrics and storage.
- app.rules: Rule model, catalog, evaluators and the enforcement coordinator.
- app.usage: Usage store contract with in-memory and Redis backends.
- app.management: Owner-gated rule administration.

Guidelines:
- Checks never mutate usage; tracking happens after the action succeeds.
- Checks fail closed on store errors; tracking fails open.
"""
