"""
CareLink Scheduling

FastAPI service for the patient/provider platform's appointment scheduling
engine, with stateless session tokens, an edge authorization filter and
live role/verification checks.
"""

__version__ = "1.0.0"
