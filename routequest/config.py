import os


def _float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


def _int(name: str, default: str) -> int:
    return int(os.environ.get(name, default))


class Config:
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///./routequest.db'
    # secret for verifying player tokens; override with SESSION_SECRET in production
    SESSION_SECRET = os.environ.get('SESSION_SECRET') or 'dev-secret-change-me'

    # GPS slack added to every checkpoint radius (meters). Deployment-wide, never per request.
    GEOFENCE_TOLERANCE_M = _float('GEOFENCE_TOLERANCE_M', '10')

    LEADERBOARD_MAX_ENTRIES = _int('LEADERBOARD_MAX_ENTRIES', '100')
    LEADERBOARD_CACHE_TTL_SECONDS = _int('LEADERBOARD_CACHE_TTL_SECONDS', '30')
    STATS_CACHE_TTL_SECONDS = _int('STATS_CACHE_TTL_SECONDS', '60')
    POPULAR_CHECKPOINTS = _int('POPULAR_CHECKPOINTS', '5')

    # Completion transaction retries (attempts, first backoff in seconds)
    COMPLETION_MAX_RETRIES = _int('COMPLETION_MAX_RETRIES', '3')
    COMPLETION_RETRY_BASE_DELAY = _float('COMPLETION_RETRY_BASE_DELAY', '0.05')

    RATE_LIMIT_MAX_REQUESTS = _int('RATE_LIMIT_MAX_REQUESTS', '60')
    RATE_LIMIT_WINDOW_SECONDS = _int('RATE_LIMIT_WINDOW_SECONDS', '60')

    HOST = os.environ.get('HOST') or '127.0.0.1'
    PORT = _int('PORT', '8000')

    CORS_ORIGINS = [
        o.strip()
        for o in (os.environ.get('CORS_ORIGINS') or 'http://localhost:3000,http://localhost:8081,http://localhost:19006').split(',')
        if o.strip()
    ]
