"""ECPDS command-line client.

Submits data files, notifications and scheduler requests to an ECPDS
coordinator over its line protocol, and streams submitted files to one of
the data movers the coordinator hands back:
- frame: newline-terminated command/reply codec
- net: TCP connections with randomized multi-host failover
- session: the coordinator state machine (notify, scheduler, waitfor, submit)
- handoff: payload delivery to the first data mover that accepts it
"""

from .constants import VERSION

__all__ = ["VERSION"]
