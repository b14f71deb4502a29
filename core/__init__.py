"""Core application for the BloodBridge backend.

This package contains the models, services, serializers, views and route
registrations behind the blood request lifecycle, donor matching and
account verification API.
"""
