"""
Core staging module

Provides staged intents, the conflict guard, the staging store and the
session registry that scopes stores to a single view.
"""
from . import intents
from . import conflicts
from . import staging
from . import sessions

__all__ = ['intents', 'conflicts', 'staging', 'sessions']
