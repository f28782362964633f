from __future__ import annotations


class GateError(RuntimeError):
    """Base class for every failure raised by the token gate."""


class LedgerError(GateError):
    """A Solana RPC call failed or returned something unusable.

    Always transient from the gate's point of view: the holder is told to try
    again shortly and the sweep moves on to the next identity.
    """


class ConfigurationError(GateError):
    """The gate is not configured well enough to run the operation."""


class ZeroSupplyError(ConfigurationError):
    def __init__(self, mint: str) -> None:
        super().__init__(f"Token supply of {mint} is zero, cannot verify ownership.")
        self.mint = mint


class AccessError(GateError):
    """The chat platform refused a grant, revoke or notify call."""
