"""Category and dominant-color classification for marketplace product photos."""
