"""
Transparency Log Registry Client

Verifies package and operator logs against Merkle proofs and signed
checkpoints, keeps a local validated view of each log, and drives the
publish workflow (stage, upload content, submit, await inclusion).
"""

__version__ = "0.1.0"
