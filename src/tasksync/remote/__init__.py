"""Remote task authority clients (HTTP and offline stand-in)."""
