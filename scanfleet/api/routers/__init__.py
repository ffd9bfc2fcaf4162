"""API routers: scan, worker callbacks, live feed and health."""
