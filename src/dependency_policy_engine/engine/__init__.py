"""Policy evaluation engine.

Leaf-first: fields -> conditions -> scope -> rules -> violations -> actions ->
evaluator -> orchestrator. The registry and template catalog manage the
policies the engine evaluates.
"""
