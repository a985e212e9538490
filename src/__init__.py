"""
SecureNow SOS - Emergency Alert Escalation Service

Headless backend for the SecureNow personal safety app. Drives SOS alerts
through activation, escalation, final-alert and cancellation, notifying the
user's emergency contacts by call and text along the way.
"""

__version__ = "1.0.0"
__author__ = "SecureNow Development Team"
