"""Turn pipeline for a call session.

Each module encapsulates one phase of a turn (completion, synthesis) or one
piece of the plumbing that carries a turn's output back to the call.
"""
