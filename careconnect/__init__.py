"""
CareConnect

A FastAPI-based backend for patients, admins and practitioners, with
authentication, practitioner availability scheduling and real-time
practitioner presence.
"""

__version__ = "1.0.0"
