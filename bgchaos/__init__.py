"""Blue/green chaos backend.

A small HTTP backend meant to sit behind a primary/backup reverse proxy:
 - liveness (`/healthz`) and build identity (`/version`)
 - chaos injection (`/chaos/start`, `/chaos/stop`) to force failover
 - nginx config rendering and a failover observer for drills

The proxy itself is off-the-shelf; this package only feeds and watches it.
"""
