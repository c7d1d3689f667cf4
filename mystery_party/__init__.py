"""Shared game-state synchronization for live murder-mystery party games.

The store (`game_store`) is the single source of truth; `sync` holds the
client-side mirror and the feeds that keep it current; `protocol` holds the
game rules as pure transforms.
"""
