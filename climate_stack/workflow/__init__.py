"""
End-to-end orchestration of the disturbance stack products.
"""

from .disturbance_workflow import DisturbanceStackWorkflow, WorkflowResult

__all__ = [
    "DisturbanceStackWorkflow",
    "WorkflowResult",
]
