"""
Services for SecureNow SOS

Contains the SOS escalation service and its HTTP API.
"""
