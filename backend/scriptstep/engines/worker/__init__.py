"""
Client side of the external script worker.
"""

from .client import ExternalWorkerClient, wait_for_pending_cancels

__all__ = ["ExternalWorkerClient", "wait_for_pending_cancels"]
