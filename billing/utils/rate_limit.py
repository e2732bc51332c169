from typing import Dict, Any
from fastapi import Request, Response, HTTPException
import os
import time
import hashlib

from billing.utils.security import extract_token


def _user_key_from_request(req: Request) -> str:
    # Priorité: token (hashé) puis IP
    token = extract_token(req)
    path = req.url.path
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{h}:{path}"
    ip = req.client.host if req.client else "local"
    return f"ip:{ip}:{path}"


def optional_rate_limit(times: int, seconds: int):
    async def _dep(request: Request, response: Response):
        # Fallback mémoire (dev / Redis indisponible)
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            now = time.time()
            key = _user_key_from_request(request)
            store = getattr(request.app.state, "_rl_store", {})
            hits = [t for t in store.get(key, []) if now - t < seconds]
            if len(hits) >= times:
                raise HTTPException(status_code=429, detail="Too Many Requests")
            hits.append(now)
            store[key] = hits
            request.app.state._rl_store = store
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is False:
            return

        try:
            from fastapi_limiter.depends import RateLimiter

            async def _identifier(req: Request) -> str:
                return _user_key_from_request(req)
            return await RateLimiter(times=times, seconds=seconds, identifier=_identifier)(request, response)
        except HTTPException:
            raise
        except Exception:
            # fastapi-limiter non initialisé: pas de 429 en prod
            return
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    try:
        from fastapi_limiter import FastAPILimiter
        ready = getattr(FastAPILimiter, "redis", None) is not None
    except Exception:
        ready = False
    return {
        "enabled": (bool(enabled) if enabled is not None else None),
        "ready": ready,
        "backend": "redis" if ready else None,
    }
