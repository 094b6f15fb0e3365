from fastapi import Request, Response
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter


class OptionalRateLimiter(RateLimiter):
    """RateLimiter that stands down when no Redis connection was configured."""

    async def __call__(self, request: Request, response: Response):
        if FastAPILimiter.redis is None:
            return
        await super().__call__(request, response)


login_limiter = OptionalRateLimiter(times=5, seconds=60)
register_limiter = OptionalRateLimiter(times=3, seconds=60)
admin_limiter = OptionalRateLimiter(times=30, seconds=60)
