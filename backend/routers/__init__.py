"""HTTP routers for the panel API."""
