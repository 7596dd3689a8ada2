"""
Pipeline stages for history reconstruction.

Resolution, materialization, affinity, synthesis and insertion run in that
order; each subpackage exposes the service the orchestrator wires together.
"""

__all__ = ["resolution", "materialization", "affinity", "synthesis", "insertion"]
