"""
Client-side data-consistency layer for item groups: coalesced, cached reads
and offline-aware writes replayed on reconnect.
"""
