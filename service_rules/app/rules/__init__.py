"""
Rules package.

Defines the rule model and the enforcement path used by the Rules Service.
Five rule kinds (rate, feature, access, content and schedule limits) are
evaluated by pure functions; the coordinator resolves actions to rules,
reads usage and aggregates a single allow/deny decision with a reason.

Modules of interest:
- models: Rule kinds, usage records, caller context and results.
- catalog: Validation, templates and the ordered rule set.
- evaluators: One decision function per rule kind.
- coordinator: Action resolution, enforcement and usage tracking.
- fallback: Local limits for callers without an identity.
- binder_checks: Binder operations expressed as mapped action checks.
"""
