"""ShelfCount: count shelf stock from a photo with a vision model."""
