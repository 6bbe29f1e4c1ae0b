"""
Rules package.

Defines the permission data model, the static role baseline table and the
policy resolver. Resolution is a pure function of the current snapshot:
user override, then active group rules (any DENY wins), then role baseline,
then role/context refinement that can only downgrade ALLOW to DENY.

Modules of interest:
- models: Records, enums, the snapshot read model and decision results.
- baseline: Role default permission sets and manage implication.
- engine: PolicyResolver and condition evaluation.
"""
