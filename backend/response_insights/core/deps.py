from fastapi import HTTPException, status

from response_insights.core.config import settings

# --- Capability Dependency ---
def require_ai_insights():
    """
    Dependency that rejects insight extraction when AI insights are disabled.

    The services assume they are only invoked when extraction is permitted,
    so the check lives here, in front of them.
    """
    if not settings.AI_INSIGHTS_ENABLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="AI insights are not enabled for this deployment."
        )
