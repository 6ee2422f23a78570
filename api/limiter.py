"""
api/limiter.py -- Login throttling for agg-api.

One Limiter for the whole process: api/main.py mounts it as middleware and
api/routes/v1/auth.py attaches LOGIN_RATE_LIMIT to POST /auth/login. Separate
instances would keep separate counters and never trip.

Moving-window counting, keyed on the client IP, so a brute-force client
cannot double its attempts by straddling a fixed window boundary. Counters
live in process memory and reset on restart.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, strategy="moving-window", storage_uri="memory://")
