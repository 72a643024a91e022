"""
Promptflow - An async execution engine for visual AI workflows.

Runs a user-authored graph of trigger, generative-model, API, condition
and passthrough nodes, sharing data through run-scoped variables.
"""

__version__ = "1.0.0"
