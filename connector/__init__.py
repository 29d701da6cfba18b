"""
OpsGate Connector.
Telegram transport for approval cards and button callbacks.
"""
