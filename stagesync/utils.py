import logging
import traceback
from functools import wraps

import redis
from fastapi import HTTPException

from stagesync.core.conflicts import ConflictError, UnknownIntentError
from stagesync.services.backend import RemoteCallError

logger = logging.getLogger(__name__)


def handle_errors(func):
    """
    Decorator to handle common exceptions in API endpoints.

    Staging errors and backend failures are mapped to HTTP responses with
    meaningful messages. Anything unexpected becomes a 500.

    Raises:
        HTTPException: with status codes:
                       - 409 for staging conflicts
                       - 400 for invalid input
                       - 404 for unknown staged changes (unknown sessions are
                         handled where the registry is queried)
                       - 502 for backend failures
                       - 503 for cache outages
                       - 500 for unexpected errors

    Example:
        >>> @app.post("/example")
        >>> @handle_errors
        >>> def example_endpoint():
        >>>     # Your endpoint logic here
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)

        except HTTPException:
            raise

        except ConflictError as e:
            logger.info(f"Staging conflict: {e.reason}")
            raise HTTPException(
                status_code=409,
                detail={"message": e.reason, "conflicting_ids": sorted(e.conflicting_ids)},
            )

        except RemoteCallError as e:
            logger.error(f"Backend error: {e}")
            raise HTTPException(status_code=502, detail={"message": "Backend call failed", "error": e.to_dict()})

        except UnknownIntentError as e:
            logger.info(f"Staged change not found: {e.intent_id}")
            raise HTTPException(status_code=404, detail=f"Staged change not found: {e.intent_id}")

        except (ValueError, TypeError) as e:
            # Includes StagingValidationError
            logger.info(f"Client-side error: {e}")
            raise HTTPException(status_code=400, detail=str(e))

        except redis.RedisError as e:
            logger.error(f"Cache error: {e}")
            raise HTTPException(status_code=503, detail="Service unavailable: cache error.")

        except Exception as e:
            tb = traceback.format_exc()
            logger.error(f"Unexpected server error: {e}\nTraceback:\n{tb}")
            raise HTTPException(status_code=500, detail="An unexpected server error occurred.")
    return wrapper
