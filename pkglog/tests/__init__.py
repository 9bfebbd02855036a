"""
Test suite for the pkglog client.

Focus areas:
- Canonical serialization and content addressing
- Merkle proof verification and checkpoint tracking
- Log state fold (chain order, permissions, idempotency)
- Publish workflow against an in-process registry
"""
