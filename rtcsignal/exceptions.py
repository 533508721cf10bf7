"""Exception types for negotiation and data channel errors."""
from __future__ import annotations


class NegotiationError(Exception):
    """Error negotiating a session with the remote peer.

    The session that raised the error has been torn down and the peer must
    send a new offer to restart negotiation.
    """

    pass


class NegotiationInProgressError(NegotiationError):
    """Offer received while another session is active.

    Unlike other negotiation errors, the active session is left untouched.
    """

    pass


class NegotiationTimeoutError(NegotiationError):
    """Timeout waiting on a negotiation step to complete."""

    pass


class CandidateApplyError(Exception):
    """A remote ICE candidate could not be applied to the connection."""

    pass


class ChannelSendError(Exception):
    """Sending on a data channel that is not open."""

    pass
