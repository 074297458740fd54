from . import inbox, ping, realtime, tickets

__all__ = ["inbox", "ping", "realtime", "tickets"]
