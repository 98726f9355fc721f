"""
Publish Module

Applies staged intents to the course backend.
"""
from .service import Publisher, PublishResult, IntentOutcome, moves_first, creates_first

__all__ = ['Publisher', 'PublishResult', 'IntentOutcome', 'moves_first', 'creates_first']
