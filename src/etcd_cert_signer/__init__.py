"""
etcd_cert_signer — issues peer and server certificates for etcd members.

Watches etcd member pods, and for every member whose per-kind secret has no
certificate yet, signs one with the cluster CA and stores it back alongside
its private key.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
