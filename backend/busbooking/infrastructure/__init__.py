"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .telebirr import TelebirrClient, get_telebirr_client, sign_params, verify_signature
from .task_sink import FollowUpTaskSink, LowSlotAlert, get_task_sink

__all__ = [
    'TelebirrClient', 'get_telebirr_client', 'sign_params', 'verify_signature',
    'FollowUpTaskSink', 'LowSlotAlert', 'get_task_sink',
]
