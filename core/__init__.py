"""Core application for the CareLink marketplace backend.

This package contains the models, the request lifecycle and bid ledger
services, serializers, views and route registrations of the API.
"""
