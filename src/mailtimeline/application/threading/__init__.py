"""Conversation threading."""

from mailtimeline.application.threading.identifier import ThreadIdentifier, seed_thread_id, subject_key

__all__ = ["ThreadIdentifier", "seed_thread_id", "subject_key"]
