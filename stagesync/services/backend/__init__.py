"""
Course Backend Service Module

Provides the client for the hosted course backend and its typed requests.
"""
from .client import BackendClient, RemoteCallError, TransientBackendError, InvalidRequestError
from .models import CreatedRow

__all__ = ['BackendClient', 'RemoteCallError', 'TransientBackendError', 'InvalidRequestError', 'CreatedRow']
