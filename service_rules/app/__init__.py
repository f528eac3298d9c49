"""
Rule enforcement service application.
"""
