"""
Pydantic schemas for question replacement jobs
"""
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional

from scrolls.schemas.quiz import CamelModel


class ReplaceQuestionRequest(BaseModel):
    """Optional overrides for the replacement question"""
    difficulty: Optional[str] = Field(None, pattern="^(easy|intermediate|hard)$")
    book: Optional[str] = Field(None, max_length=100)
    chapter: Optional[str] = Field(None, max_length=100)


class ReplaceQuestionResponse(CamelModel):
    success: bool
    job_id: str
    message: str
    poll_url: Optional[str] = None
    estimated_time: Optional[str] = None
    question_id: Optional[str] = None


class JobStatusResponse(CamelModel):
    job_id: str
    quiz_id: str
    status: str
    progress: int
    message: Optional[str] = None
    error: Optional[str] = None
    questions_count: int = 0
    questions: Optional[List[Dict[str, Any]]] = None
    created_at: str
    updated_at: str
    expires_at: str
