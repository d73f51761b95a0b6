"""
relaychat — a small real-time broadcast chat relay over WebSockets.

One server per room. Every connection is handed the room's AES-256-GCM key when
it joins; chat text travels sealed under that key and the server relays it to
everyone except the sender. The server owns display names, so nobody can post
under someone else's name.

Run `python -m relaychat.run_node --help` for the server / client / cli modes.
"""
__all__ = ["config", "crypto", "errors", "framing", "messages", "netinfo", "node", "registry", "run_node"]
