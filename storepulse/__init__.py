"""Store serviceability and item availability monitoring for Instamart."""
