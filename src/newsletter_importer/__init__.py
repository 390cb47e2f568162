"""Newsletter detection and import engine for Gmail and Outlook mailboxes."""

__version__ = "0.1.0"
