import os
from typing import Dict, Any, List, Optional
from dotenv import load_dotenv
from supabase import create_client, Client
import logging

load_dotenv()

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None

SECTION_COLUMNS = "id, title, content, section_type, order_index"
LESSON_COLUMNS = f"id, title, description, order_index, lesson_sections({SECTION_COLUMNS})"

UNGRADED_RESPONSE_SELECT = (
    "*, assessment_questions!inner("
    "question_text, question_type, answer_key, sample_response, grading_rubric, points, ai_grading_enabled)"
)


def get_supabase() -> Client:
    global _supabase_client
    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
        _supabase_client = create_client(url, key)
    return _supabase_client


# Content reads

def get_lesson(lesson_id: str) -> Optional[Dict[str, Any]]:
    """Fetch a lesson's title and description (used for the stub fallback)."""
    response = get_supabase().table("lessons").select("id, title, description").eq("id", lesson_id).limit(1).execute()
    if response.data and len(response.data) > 0:
        return response.data[0]
    return None


def get_lesson_sections(lesson_id: str) -> List[Dict[str, Any]]:
    """Fetch all sections of a lesson ordered by their declared position."""
    response = (
        get_supabase().table("lesson_sections")
        .select(SECTION_COLUMNS)
        .eq("lesson_id", lesson_id)
        .order("order_index")
        .execute()
    )
    return response.data or []


def get_path_lessons(path_id: str) -> List[Dict[str, Any]]:
    """Fetch the lessons of a path (module) with their nested sections."""
    response = (
        get_supabase().table("lessons")
        .select(LESSON_COLUMNS)
        .eq("path_id", path_id)
        .order("order_index")
        .execute()
    )
    return response.data or []


def get_class_paths(base_class_id: str) -> List[Dict[str, Any]]:
    """Fetch the paths of a base class with nested lessons and sections."""
    response = (
        get_supabase().table("paths")
        .select(f"id, title, description, order_index, lessons({LESSON_COLUMNS})")
        .eq("base_class_id", base_class_id)
        .order("order_index")
        .execute()
    )
    return response.data or []


# Assessments and questions

def insert_assessment(data: Dict[str, Any]) -> str:
    """
    Insert a new row into the 'assessments' table and return its id.
    Raises:
        Exception if insertion fails or id is not returned.
    """
    response = get_supabase().table("assessments").insert(data).execute()
    if not response.data or "id" not in response.data[0]:
        raise Exception(f"Supabase insert failed or id not returned: {response}")
    return str(response.data[0]["id"])


def insert_assessment_questions(rows: List[Dict[str, Any]]) -> List[str]:
    """
    Bulk insert question rows and return their ids in insertion order.
    Raises:
        Exception if the insert returns fewer rows than were sent.
    """
    response = get_supabase().table("assessment_questions").insert(rows).execute()
    if not response.data or len(response.data) != len(rows):
        raise Exception(f"Supabase question insert failed: {response}")
    return [str(row["id"]) for row in response.data]


def delete_assessment(assessment_id: str) -> None:
    get_supabase().table("assessments").delete().eq("id", assessment_id).execute()


def get_assessment(assessment_id: str) -> Optional[Dict[str, Any]]:
    response = get_supabase().table("assessments").select("*").eq("id", assessment_id).limit(1).execute()
    if response.data and len(response.data) > 0:
        return response.data[0]
    return None


def get_questions_by_ids(question_ids: List[str]) -> List[Dict[str, Any]]:
    response = get_supabase().table("assessment_questions").select("*").in_("id", question_ids).execute()
    return response.data or []


# Student responses and attempts

def get_ungraded_responses(attempt_id: str, question_types: List[str]) -> List[Dict[str, Any]]:
    """
    Responses of an attempt that still need AI grading: the joined question has
    AI grading enabled and a free-text type, and neither an AI nor a manual score exists.
    """
    response = (
        get_supabase().table("student_responses")
        .select(UNGRADED_RESPONSE_SELECT)
        .eq("attempt_id", attempt_id)
        .eq("assessment_questions.ai_grading_enabled", True)
        .in_("assessment_questions.question_type", question_types)
        .is_("ai_score", "null")
        .is_("manual_score", "null")
        .execute()
    )
    return response.data or []


def get_attempt_responses(attempt_id: str) -> List[Dict[str, Any]]:
    """All responses of an attempt with the points of their question."""
    response = (
        get_supabase().table("student_responses")
        .select("id, ai_score, manual_score, final_score, grading_status, assessment_questions!inner(points)")
        .eq("attempt_id", attempt_id)
        .execute()
    )
    return response.data or []


def get_student_response(response_id: str) -> Optional[Dict[str, Any]]:
    response = get_supabase().table("student_responses").select("id, attempt_id").eq("id", response_id).limit(1).execute()
    if response.data and len(response.data) > 0:
        return response.data[0]
    return None


def update_student_response(response_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    response = get_supabase().table("student_responses").update(data).eq("id", response_id).execute()
    if not response.data:
        raise Exception(f"Student response update failed for {response_id}: {response}")
    return response.data[0]


def get_attempt(attempt_id: str) -> Optional[Dict[str, Any]]:
    response = (
        get_supabase().table("student_attempts")
        .select("id, assessment_id, student_id, status")
        .eq("id", attempt_id)
        .limit(1)
        .execute()
    )
    if response.data and len(response.data) > 0:
        return response.data[0]
    return None


def update_attempt(attempt_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    response = get_supabase().table("student_attempts").update(data).eq("id", attempt_id).execute()
    if not response.data:
        raise Exception(f"Attempt update failed for {attempt_id}: {response}")
    return response.data[0]


# Results and analytics

def get_assessment_results(assessment_id: str) -> List[Dict[str, Any]]:
    """Every attempt of an assessment with its responses and their questions, newest first."""
    response = (
        get_supabase().table("student_attempts")
        .select(
            "*, student_responses(*, assessment_questions(question_text, question_type, points, answer_key))"
        )
        .eq("assessment_id", assessment_id)
        .order("submitted_at", desc=True)
        .execute()
    )
    return response.data or []


def get_graded_attempts(assessment_id: str) -> List[Dict[str, Any]]:
    response = (
        get_supabase().table("student_attempts")
        .select("id, student_id, percentage_score, status, time_spent_minutes")
        .eq("assessment_id", assessment_id)
        .eq("status", "graded")
        .execute()
    )
    return response.data or []


def get_responses_for_attempts(attempt_ids: List[str]) -> List[Dict[str, Any]]:
    if not attempt_ids:
        return []
    response = (
        get_supabase().table("student_responses")
        .select(
            "question_id, is_correct, ai_score, manual_score, final_score, "
            "assessment_questions!inner(question_text, question_type, points)"
        )
        .in_("attempt_id", attempt_ids)
        .execute()
    )
    return response.data or []


# Progress

def upsert_assessment_progress(data: Dict[str, Any]) -> None:
    get_supabase().table("assessment_progress").upsert(data, on_conflict="assessment_id,user_id").execute()
    logger.info(f"Assessment progress saved for {data.get('assessment_id')} / {data.get('user_id')}")
