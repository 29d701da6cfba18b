"""
OpsGate.
Human-in-the-loop approval gate for side-effecting ops actions.
"""

__version__ = "0.1.0"

PACK_NAME = "OpsGate"
