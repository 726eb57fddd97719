"""
Scoring Engine
Deterministic candidate fit scoring against a campaign JobSpec
"""
import logging
import re
from typing import Dict, Iterable, List, Optional

from outreach.domain.models.candidate import CandidateProfile
from outreach.domain.models.job_spec import JobSpec, WEIGHT_CATEGORIES
from outreach.domain.models.scoring import ScoreBreakdown, ScoreBucket

logger = logging.getLogger(__name__)

# Score used when the rubric does not specify a criterion
NEUTRAL = 60.0

# Title keyword -> seniority rank
SENIORITY_RANKS = [
    ("chief", 7), ("ceo", 7), ("cfo", 7), ("cto", 7), ("coo", 7), ("cro", 7),
    ("president", 6), ("svp", 6), ("evp", 6),
    ("vp", 5), ("vice president", 5), ("head of", 5),
    ("director", 4),
    ("senior manager", 3), ("manager", 3), ("lead", 3),
    ("senior", 2), ("principal", 2),
    ("associate", 1), ("specialist", 1), ("coordinator", 1),
    ("intern", 0), ("assistant", 0),
]

DEGREE_RANKS = [
    ("phd", 4), ("doctor", 4),
    ("mba", 3), ("master", 3), ("ms", 3), ("ma", 3),
    ("bachelor", 2), ("bs", 2), ("ba", 2), ("bsc", 2),
    ("associate", 1),
]


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _contains_any(text: str, needles: Iterable[str]) -> Optional[str]:
    """First needle contained in text (case-insensitive)."""
    text = _norm(text)
    for needle in needles:
        n = _norm(needle)
        if n and n in text:
            return needle
    return None


def seniority_rank(title: Optional[str]) -> Optional[int]:
    title = _norm(title)
    if not title:
        return None
    for keyword, rank in SENIORITY_RANKS:
        # Whole words only: "director" must not match "cto"
        if re.search(rf"\b{re.escape(keyword)}\b", title):
            return rank
    return None


def degree_rank(degree: Optional[str]) -> Optional[int]:
    words = _norm(degree).replace(".", "").replace("'", "").split()
    if not words:
        return None
    for keyword, rank in DEGREE_RANKS:
        if any(word == keyword or (len(keyword) > 3 and word.startswith(keyword)) for word in words):
            return rank
    return None


def weighted_total(sub_scores: Dict[str, float], weights: Dict[str, int]) -> float:
    """
    Weighted average of sub-scores, divided by the actual weight sum.

    Equals the plain weighted sum / 100 when weights add up to 100.
    """
    weight_sum = sum(weights.get(name, 0) for name in WEIGHT_CATEGORIES)
    if weight_sum <= 0:
        return 0.0
    total = sum(sub_scores[name] * weights.get(name, 0) for name in WEIGHT_CATEGORIES)
    return round(min(100.0, max(0.0, total / weight_sum)), 2)


class ScoringEngine:
    """
    Scores a CandidateProfile against a JobSpec.

    Hard filters run first and short-circuit to a zero, Cold result. Each
    category is otherwise scored in [0, 100] from rubric sub-criteria and
    combined with the JobSpec's effective weights. No randomness or clock.
    """

    def score(self, profile: CandidateProfile, job_spec: JobSpec) -> ScoreBreakdown:
        reason = self.hard_filter_reason(profile, job_spec)
        if reason:
            logger.debug(f"Candidate disqualified: {reason}")
            return ScoreBreakdown(
                total=0.0,
                bucket=ScoreBucket.COLD,
                hard_filter_passed=False,
                disqualify_reason=reason,
                flags=[f"disqualified:{reason}"],
            )

        sub_scores = {
            "role_fit": self.role_fit(profile, job_spec),
            "company_context": self.company_context(profile, job_spec),
            "trajectory_stability": self.trajectory_stability(profile),
            "education": self.education(profile, job_spec),
            "profile_quality": self.profile_quality(profile),
        }
        total = weighted_total(sub_scores, job_spec.effective_weights())

        return ScoreBreakdown(
            **sub_scores,
            total=total,
            bucket=ScoreBucket.for_total(total),
            hard_filter_passed=True,
            flags=self._flags(profile),
        )

    # ---- Tier 1: hard filters ------------------------------------------

    def hard_filter_reason(self, profile: CandidateProfile, job_spec: JobSpec) -> Optional[str]:
        """Disqualification reason, or None when every hard filter passes."""
        # Onsite roles need a matching location
        if _norm(job_spec.remote_policy) == "onsite" and job_spec.location and profile.location:
            job_loc, cand_loc = _norm(job_spec.location), _norm(profile.location)
            if job_loc not in cand_loc and cand_loc not in job_loc:
                return (
                    f"Location mismatch: candidate is in \"{profile.location}\" but role "
                    f"requires onsite in \"{job_spec.location}\""
                )

        if job_spec.disqualify_companies and profile.current_company:
            company = _norm(profile.current_company)
            for disqualified in job_spec.disqualify_companies:
                d = _norm(disqualified)
                if d and (d in company or company in d):
                    return f"Current company \"{profile.current_company}\" is on the disqualify list"

        if job_spec.disqualify_titles and profile.current_title:
            match = _contains_any(profile.current_title, job_spec.disqualify_titles)
            if match:
                return (
                    f"Current title \"{profile.current_title}\" matches disqualified "
                    f"title pattern \"{match}\""
                )

        # Chronic job hopping: judged only when every tenure is recorded
        if len(profile.experience) >= 3:
            tenures = [exp.tenure_months() for exp in profile.experience]
            if all(t is not None for t in tenures) and not any(t > 12 for t in tenures):
                return "Chronic job hopping: no role with tenure exceeding 12 months across career"

        if job_spec.required_certifications:
            held = [_norm(c) for c in profile.certifications]
            missing = [
                cert for cert in job_spec.required_certifications
                if not any(_norm(cert) in h for h in held)
            ]
            if missing:
                return f"Missing required certifications: {', '.join(missing)}"

        return None

    # ---- Tier 2: category scores ---------------------------------------

    def role_fit(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        """Title 30%, experience 30%, industry 20%, skills 20%."""
        title = self._title_match(profile, job_spec)
        years = self._experience_fit(profile, job_spec)
        industry = self._industry_match(profile, job_spec)
        skills = self._skill_overlap(profile, job_spec)
        return round(title * 0.3 + years * 0.3 + industry * 0.2 + skills * 0.2, 2)

    def _title_match(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        if not job_spec.function and not job_spec.role_level:
            return NEUTRAL
        title = _norm(profile.current_title)
        if not title:
            return 0.0

        function_hit = bool(job_spec.function) and _norm(job_spec.function) in title
        wanted = seniority_rank(job_spec.role_level)
        have = seniority_rank(title)
        level_gap = abs(wanted - have) if wanted is not None and have is not None else None

        if job_spec.function and job_spec.role_level:
            if function_hit and level_gap == 0:
                return 100.0
            if function_hit and level_gap == 1:
                return 67.0
            if function_hit or level_gap == 0:
                return 33.0
            return 0.0
        if job_spec.function:
            return 100.0 if function_hit else 0.0
        if level_gap == 0:
            return 100.0
        return 67.0 if level_gap == 1 else 0.0

    def _experience_fit(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        minimum = job_spec.years_experience_min
        ideal = job_spec.years_experience_ideal
        if minimum is None and ideal is None:
            return NEUTRAL
        years = profile.total_experience_years()
        if years is None:
            return 0.0

        target = ideal if ideal is not None else minimum
        if years >= target:
            fit = 100.0
        elif minimum is not None and years >= minimum:
            fit = 67.0
        elif minimum is not None and years >= minimum * 0.8:
            fit = 33.0
        else:
            fit = 0.0

        maximum = job_spec.years_experience_max
        if maximum is not None and years > maximum:
            fit = min(fit, 67.0)
        return fit

    def _candidate_industries(self, profile: CandidateProfile) -> List[str]:
        industries = [profile.current_industry] + list(profile.industries)
        industries += [exp.industry for exp in profile.experience]
        return [i for i in industries if i]

    def _industry_match(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        if not job_spec.industry_targets:
            return NEUTRAL
        industries = self._candidate_industries(profile)
        if not industries:
            return 0.0
        if any(_contains_any(i, job_spec.industry_targets) for i in industries):
            return 100.0
        if job_spec.industry_adjacent_ok and any(
            _contains_any(i, job_spec.industry_adjacent_ok) for i in industries
        ):
            return 60.0
        return 0.0

    def _skill_overlap(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        if not job_spec.required_skills and not job_spec.nice_to_have_skills:
            return NEUTRAL
        skills = {_norm(s) for s in profile.skills}

        def fraction(wanted: List[str]) -> float:
            if not wanted:
                return 1.0
            return sum(1 for s in wanted if _norm(s) in skills) / len(wanted)

        if not job_spec.nice_to_have_skills:
            return round(fraction(job_spec.required_skills) * 100, 2)
        if not job_spec.required_skills:
            return round(fraction(job_spec.nice_to_have_skills) * 100, 2)
        return round(
            fraction(job_spec.required_skills) * 80 + fraction(job_spec.nice_to_have_skills) * 20, 2
        )

    def company_context(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        """Size 40%, growth stage 40%, brand 20% (neutral: never specified)."""
        size = self._size_match(profile, job_spec)
        stage = self._growth_stage_match(profile, job_spec)
        return round(size * 0.4 + stage * 0.4 + NEUTRAL * 0.2, 2)

    def _size_match(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        low, high = job_spec.company_size_min, job_spec.company_size_max
        if low is None and high is None:
            return NEUTRAL
        size = profile.current_company_size
        if size is None and profile.experience:
            size = profile.experience[0].company_size
        if size is None:
            return 0.0

        low = low if low is not None else 0
        if low <= size and (high is None or size <= high):
            return 100.0
        if size >= low * 0.5 and (high is None or size <= high * 1.5):
            return 60.0
        return 20.0

    def _growth_stage_match(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        if not job_spec.growth_stage:
            return NEUTRAL
        texts = [profile.summary or ""] + [exp.description or "" for exp in profile.experience]
        if any(_contains_any(text, job_spec.growth_stage) for text in texts):
            return 100.0
        return 20.0

    def trajectory_stability(self, profile: CandidateProfile) -> float:
        """Title progression 50%, average tenure 50%."""
        return round(self._progression(profile) * 0.5 + self._average_tenure(profile) * 0.5, 2)

    def _progression(self, profile: CandidateProfile) -> float:
        experience = list(profile.experience)
        if len(experience) < 2:
            return 70.0 if experience else 0.0
        if all(exp.start_date for exp in experience):
            experience.sort(key=lambda exp: exp.start_date)
        else:
            # Profiles list the most recent role first
            experience.reverse()

        ranks = [seniority_rank(exp.title) for exp in experience]
        first = next((r for r in ranks if r is not None), None)
        last = next((r for r in reversed(ranks) if r is not None), None)
        if first is None or last is None:
            return 40.0
        if last > first:
            return 100.0
        if last == first:
            return 40.0
        return 0.0

    def _average_tenure(self, profile: CandidateProfile) -> float:
        tenures = []
        for exp in profile.experience:
            months = exp.tenure_months()
            if months is None:
                continue
            if exp.is_current and months < 6:
                continue
            tenures.append(months)
        if not tenures:
            return 0.0
        average = sum(tenures) / len(tenures)
        if average >= 24:
            return 100.0
        if average >= 18:
            return 70.0
        if average >= 12:
            return 40.0
        return 0.0

    def education(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        """Degree level 50%, field relevance 50%."""
        return round(self._degree_level(profile, job_spec) * 0.5 + self._field_relevance(profile, job_spec) * 0.5, 2)

    def _degree_level(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        ranks = [degree_rank(e.degree) for e in profile.education]
        best = max((r for r in ranks if r is not None), default=None)
        wanted = degree_rank(job_spec.education_preferred)

        if wanted is None:
            if best is not None:
                return 100.0
            return 20.0 if job_spec.education_required else NEUTRAL
        if best is None:
            return 20.0
        if best >= wanted:
            return 100.0
        return 60.0 if best == wanted - 1 else 20.0

    def _field_relevance(self, profile: CandidateProfile, job_spec: JobSpec) -> float:
        if not job_spec.education_fields:
            return NEUTRAL
        fields = [e.field for e in profile.education if e.field]
        if any(_contains_any(f, job_spec.education_fields) for f in fields):
            return 100.0
        return 20.0

    def profile_quality(self, profile: CandidateProfile) -> float:
        """Completeness 40%, recent activity 60%."""
        completeness = {"full": 100.0, "partial": 50.0, "sparse": 0.0}.get(
            profile.profile_completeness or "", None
        )
        if completeness is None:
            present = sum([bool(profile.summary), bool(profile.experience), bool(profile.skills)])
            completeness = 100.0 if present == 3 else 50.0 if present else 0.0

        if profile.recent_activity:
            activity = 100.0
        elif profile.has_posted_content:
            activity = 33.0
        else:
            activity = 0.0
        return round(completeness * 0.4 + activity * 0.6, 2)

    def _flags(self, profile: CandidateProfile) -> List[str]:
        flags = []
        if profile.open_to_work:
            flags.append("open_to_work")
        if profile.mutual_connections >= 3:
            flags.append("mutual_connections_3_plus")
        if profile.has_posted_content:
            flags.append("content_creator")
        return flags
