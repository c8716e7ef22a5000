"""Email ingestion pipeline that turns mailboxes into CRM business timelines."""

__version__ = "0.1.0"
