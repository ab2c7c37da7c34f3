"""Building blocks of the mpv remote server."""
