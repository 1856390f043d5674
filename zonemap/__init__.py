"""
zonemap package

Tenant lifecycle (provisioning + cascading deletes) and client-side access-token
coordination for the zone editor.
"""

__version__ = "0.1.0"
