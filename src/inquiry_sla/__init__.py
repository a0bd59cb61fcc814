"""
Inquiry SLA Service
===================

SLA monitoring and escalation engine for the inquiry management backend.
"""

__version__ = "1.0.0"
