"""Core application for the migrant health card backend.

This package contains the identity verification gate, health records,
medical reports and QR health cards, together with their serializers,
services, views and route registrations.
"""
