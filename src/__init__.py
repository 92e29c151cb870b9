"""
Privacy Core - Privacy & Anonymous-Identity subsystem for the community platform.

Decides, for every piece of user-generated content, whether the author is
shown as their real account or as an anonymous persona, records every
privacy-sensitive transition in a strictly ordered audit trail, and provides
compliant export and irreversible erasure of an account's privacy data.

Core guarantees:
- No identity change without a durable, ordered audit record
- Concurrent reveal/hide on one resource never loses an update
- Erasure is checkpointed, resumable and safe to retry
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
