"""
Taohua — a local-first encrypted memory journal.

Short text and media "memories" are kept on the local disk. Entries marked as
sensitive are sealed under a key derived from the user's master password and
can only be read back while a session is unlocked. Nothing leaves the device.

Layers (bottom to top):
    1. Vault: key derivation, session lifetime, authenticated encryption
    2. Journal: durable entry records, attachments, Dream Echo recall
    3. Service: the request/response surface the UI talks to
"""

__version__ = "0.1.0"
