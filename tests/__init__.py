"""
Test suite for CareConnect.

Contains unit and integration tests for authentication, presence and
availability scheduling.
"""
