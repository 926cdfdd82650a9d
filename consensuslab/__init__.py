"""Message-passing experiments on threads: Lamport clock exchanges, shared counters and sequence Paxos."""

__version__ = "0.1.0"