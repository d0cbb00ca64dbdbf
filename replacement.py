"""Choosing a replacement for an earworm from the curated playlist."""
from __future__ import annotations

import logging
import random
from typing import List, Optional, Sequence

from models import Track
from spotify_client import SpotifySession

log = logging.getLogger(__name__)


def pick_replacement(
    earworm_id: Optional[str],
    candidates: Sequence[Track],
    rng: Optional[random.Random] = None,
    exclude: Sequence[str] = (),
) -> Optional[Track]:
    """A random candidate that is neither the earworm nor in `exclude`.

    Falls back to ignoring `exclude` when it would leave nothing to pick.
    """
    rng = rng or random.Random()
    pool = [t for t in candidates if t.id != earworm_id and t.id not in exclude]
    if not pool:
        pool = [t for t in candidates if t.id != earworm_id]
    if not pool:
        return None
    return rng.choice(pool)


def playlist_contains(tracks: List[Track], track_id: str) -> bool:
    return any(t.id == track_id for t in tracks)


def ensure_in_playlist(api: SpotifySession, playlist_id: str, track_uri: str) -> bool:
    """Add the earworm to the top of the playlist unless it is already there.

    Returns True when the track was added.
    """
    track_id = track_uri.rsplit(":", 1)[-1]
    if playlist_contains(api.get_playlist_tracks(playlist_id), track_id):
        return False
    api.add_to_playlist(playlist_id, track_uri, position=0)
    log.info("Added %s to replacement playlist", track_uri)
    return True
