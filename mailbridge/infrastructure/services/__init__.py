"""Infrastructure services: token lifecycle and mailbox connection."""
