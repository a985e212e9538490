"""
HTTP API for the SOS escalation engine
"""
