"""
collaborators.py - Default external collaborators

Simple in-memory implementations of the TransferAgent and AccessControl
protocols. Hosts with real custody or role systems supply their own.

Classes:
- StaticAccessControl: fixed set of privileged callers
- RecordingTransferAgent: records every transfer it is asked to perform
"""

from __future__ import annotations
from typing import Iterable, List, Set, Tuple


class StaticAccessControl:
    """
    Access control with a fixed set of privileged callers.

    Example:
        access = StaticAccessControl({"multisig"})
        access.is_privileged("multisig")   # True
    """

    def __init__(self, privileged: Iterable[str] = ()):
        self.privileged: Set[str] = set(privileged)

    def is_privileged(self, caller: str) -> bool:
        return caller in self.privileged

    def __repr__(self):
        return f"StaticAccessControl({len(self.privileged)} privileged)"


class RecordingTransferAgent:
    """
    Transfer agent that performs no movement and keeps a log of requests.

    Each entry is (kind, asset, counterparty, amount) with kind "pull" or "push".
    """

    def __init__(self):
        self.transfers: List[Tuple[str, str, str, int]] = []

    def pull(self, asset: str, source: str, amount: int) -> None:
        self.transfers.append(("pull", asset, source, amount))

    def push(self, asset: str, dest: str, amount: int) -> None:
        self.transfers.append(("push", asset, dest, amount))

    def total(self, kind: str, asset: str, counterparty: str) -> int:
        """Sum of recorded amounts for one direction, asset and counterparty."""
        return sum(
            amount for k, a, c, amount in self.transfers
            if k == kind and a == asset and c == counterparty
        )

    def __repr__(self):
        return f"RecordingTransferAgent({len(self.transfers)} transfers)"
