"""Business and contact association."""

from mailtimeline.application.association.associator import DEFAULT_FREEMAIL_DOMAINS, BusinessContactAssociator

__all__ = ["BusinessContactAssociator", "DEFAULT_FREEMAIL_DOMAINS"]
