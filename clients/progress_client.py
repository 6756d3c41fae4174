"""
Progress-tracking collaborator.

Grading reports one outcome per completed attempt; how progress rolls up to
paths and classes is owned elsewhere.
"""

from datetime import datetime, timezone

from clients import supabase_client
from models.assessment_models import ProgressUpdate


class ProgressTracker:
    """Writes assessment progress rows into Supabase."""

    def update_assessment_progress(self, assessment_id: str, user_id: str, update: ProgressUpdate) -> None:
        supabase_client.upsert_assessment_progress({
            "assessment_id": assessment_id,
            "user_id": user_id,
            "status": update.status.value,
            "progress_percentage": update.progress_percentage,
            "last_position": update.last_position,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        })
