from typing import Dict, List, Optional
from pydantic import BaseModel


class DreamCreateRequest(BaseModel):
    dream_text: str


class DreamCreateResponse(BaseModel):
    success: bool
    message: str
    id: str


class DreamItem(BaseModel):
    id: str
    user_id: Optional[str] = None
    original_text: str
    title: Optional[str] = None
    dream_summary: Optional[str] = None
    analysis_summary: Optional[str] = None
    topic_sentence: Optional[str] = None
    supporting_points: Optional[List[str]] = None
    conclusion_sentence: Optional[str] = None
    formatted_analysis: Optional[str] = None
    tags: Optional[List[str]] = None
    bible_refs: Optional[List[str]] = None
    created_at: Optional[str] = None


class DreamListResponse(BaseModel):
    dreams: List[DreamItem]


class DreamDeleteResponse(BaseModel):
    success: bool
    message: str


class VerseResponse(BaseModel):
    reference: str
    text: str
    source: str
    is_fallback: bool = False


class VerseDetail(BaseModel):
    text: str
    source: str
    is_fallback: bool = False


class VerseDetailLookupResponse(BaseModel):
    verses: Dict[str, VerseDetail]


class AnalysisSegment(BaseModel):
    text: str
    reference: Optional[str] = None
    verse_text: Optional[str] = None
    source: Optional[str] = None
    note: Optional[str] = None


class RenderedDreamResponse(BaseModel):
    id: str
    analyzed: bool
    segments: List[AnalysisSegment]
    supporting_points: List[List[AnalysisSegment]] = []
