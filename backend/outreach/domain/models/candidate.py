"""
Candidate Domain Models
Read-only profile data supplied by the profile ingestion source
"""
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date


class WorkExperience(BaseModel):
    """One role in a candidate's work history."""
    title: str
    company: str
    company_size: Optional[int] = None
    industry: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration_months: Optional[int] = Field(None, ge=0)
    is_current: bool = False
    description: Optional[str] = None

    def tenure_months(self) -> Optional[int]:
        """
        Recorded tenure in months.

        Uses duration_months when present, otherwise start/end dates.
        Open-ended roles without a recorded duration return None so that
        scoring never depends on the current date.
        """
        if self.duration_months is not None:
            return self.duration_months
        if self.start_date and self.end_date:
            months = (self.end_date.year - self.start_date.year) * 12
            months += self.end_date.month - self.start_date.month
            return max(0, months)
        return None


class Education(BaseModel):
    """Education entry"""
    school: str
    degree: Optional[str] = None
    field: Optional[str] = None
    graduation_year: Optional[int] = None


class CandidateProfile(BaseModel):
    """Normalized LinkedIn profile used for scoring and message merge fields."""
    current_title: Optional[str] = None
    current_company: Optional[str] = None
    current_company_size: Optional[int] = None
    current_industry: Optional[str] = None
    industries: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    open_to_work: bool = False
    years_experience: Optional[float] = Field(None, ge=0)
    experience: List[WorkExperience] = Field(default_factory=list)
    education: List[Education] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    has_posted_content: bool = False
    mutual_connections: int = 0
    profile_completeness: Optional[Literal["full", "partial", "sparse"]] = None
    recent_activity: bool = False

    def total_experience_years(self) -> Optional[float]:
        """Years of experience, explicit or summed from recorded tenures."""
        if self.years_experience is not None:
            return self.years_experience
        months = [exp.tenure_months() for exp in self.experience]
        known = [m for m in months if m is not None]
        if not known:
            return None
        return round(sum(known) / 12, 2)


class Candidate(BaseModel):
    """Candidate record as read by the engine"""
    id: str
    name: str
    linkedin_url: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    profile: CandidateProfile = Field(default_factory=CandidateProfile)
    personalization_hook: Optional[str] = None

    @property
    def first_name(self) -> str:
        parts = self.name.strip().split()
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        parts = self.name.strip().split()
        return " ".join(parts[1:]) if len(parts) > 1 else ""
