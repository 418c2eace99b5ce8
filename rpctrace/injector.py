"""Merges carrier items into a call's attachments."""

from __future__ import annotations

from collections.abc import MutableMapping

from rpctrace.carrier import Carrier


def inject(
    carrier: Carrier,
    outbound_attachments: MutableMapping[str, str],
    local_attachments: MutableMapping[str, str],
) -> None:
    """
    Propagate every carrier item with the outbound call.

    Each item is written into the local request context first; a stale
    entry under the same key in the call's own attachments is then removed,
    so the freshly generated value is the one the transport sends.
    """
    for item in carrier:
        local_attachments[item.key] = item.value
        if item.key in outbound_attachments:
            del outbound_attachments[item.key]
