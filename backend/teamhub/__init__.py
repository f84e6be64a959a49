"""Application package for the course team-formation backend.

This package exposes the service, repository and model modules used by
the FastAPI application: the membership ledger, leader elections and
the mentorship request protocol between teams and lecturers.
"""
