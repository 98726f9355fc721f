"""
External Service Integrations

Available Services:
- Course backend: group and email mutations, group and email history reads

Usage:
    from stagesync.services.backend import BackendClient, RemoteCallError
"""
from .backend import BackendClient, RemoteCallError, TransientBackendError

__all__ = [
    'BackendClient',
    'RemoteCallError',
    'TransientBackendError',
]
