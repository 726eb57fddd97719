"""
Template Message Generator
Renders outreach text from Jinja2 templates and candidate/campaign merge fields
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from jinja2 import Environment, BaseLoader
import logging

from outreach.domain.errors import NotFoundError
from outreach.domain.interfaces.message_generator import MessageGenerator, ProposedContent
from outreach.domain.models.campaign import Campaign
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import ActionType, PipelineStageTemplate, TEXT_ACTIONS

logger = logging.getLogger(__name__)

# LinkedIn rejects connection notes longer than this
MAX_CONNECTION_NOTE = 300

MERGE_FIELDS = [
    "first_name", "last_name", "full_name", "title", "company", "hook",
    "function", "company_type", "role_level", "industry",
    "client_description_external", "role_one_liner",
    "recruiter_name", "qualify_link",
]


class MessageTemplate(BaseModel):
    """Single outreach template definition."""
    id: str = Field(..., description="Template identifier referenced by stages")
    action_type: ActionType
    body: str = Field(..., description="Jinja2 body template")
    description: str = Field("", description="Template purpose description")


def build_merge_context(
    candidate: Candidate,
    campaign: Optional[Campaign] = None,
    recruiter_name: str = "",
    qualify_link: str = ""
) -> Dict[str, Any]:
    """Merge fields for a candidate, the campaign's JobSpec and the recruiter."""
    job_spec = campaign.job_spec if campaign else None
    return {
        "first_name": candidate.first_name,
        "last_name": candidate.last_name,
        "full_name": candidate.name,
        "title": candidate.title or candidate.profile.current_title or "",
        "company": candidate.company or candidate.profile.current_company or "",
        "hook": candidate.personalization_hook or "",
        "function": (job_spec.function if job_spec else None) or "",
        "company_type": "/".join(job_spec.growth_stage) if job_spec else "",
        "role_level": (job_spec.role_level if job_spec else None) or "",
        "industry": job_spec.industry_targets[0] if job_spec and job_spec.industry_targets else "",
        "client_description_external": (job_spec.client_description_external if job_spec else None) or "",
        "role_one_liner": (job_spec.role_one_liner if job_spec else None) or "",
        "recruiter_name": recruiter_name,
        "qualify_link": qualify_link,
    }


class TemplateMessageGenerator(MessageGenerator):
    """
    Proposes stage text by rendering templates.

    Stages pick a template by `template_id`; stages without one use the
    default for their action type. Text-less actions yield empty content.
    """

    def __init__(self, recruiter_name: str = "", qualify_link: str = ""):
        self.recruiter_name = recruiter_name
        self.qualify_link = qualify_link
        self.templates: Dict[str, MessageTemplate] = {}
        self.env = Environment(loader=BaseLoader())
        self._load_default_templates()

    def _load_default_templates(self) -> None:
        defaults = [
            MessageTemplate(
                id="connection_request_hook",
                action_type=ActionType.CONNECTION_REQUEST,
                description="Connection note built around the personalization hook",
                body=(
                    "Hi{% if first_name %} {{ first_name }}{% endif %},"
                    "{% if hook %} {{ hook }} caught my eye.{% endif %} I work with growth-stage "
                    "companies filling key leadership roles and have a{% if function %} {{ function }}{% endif %} "
                    "position that may be worth a quick look. Happy to share details if there's any interest."
                ),
            ),
            MessageTemplate(
                id="connection_request",
                action_type=ActionType.CONNECTION_REQUEST,
                description="Connection note when there is no strong hook",
                body=(
                    "Hi{% if first_name %} {{ first_name }}{% endif %}, your background"
                    "{% if function %} in {{ function }}{% endif %}"
                    "{% if company_type %} at {{ company_type }} companies{% endif %} stood out. "
                    "I represent a client with a{% if role_level %} {{ role_level }}{% endif %}"
                    "{% if function %} {{ function }}{% endif %} role that may be a fit. "
                    "Worth a quick conversation?"
                ),
            ),
            MessageTemplate(
                id="message",
                action_type=ActionType.MESSAGE,
                description="First message after the connection is accepted",
                body=(
                    "Thanks for connecting{% if first_name %}, {{ first_name }}{% endif %}.\n\n"
                    "I'm working with {% if client_description_external %}{{ client_description_external }}"
                    "{% else %}a client{% endif %} looking for a{% if role_level %} {{ role_level }}{% endif %}"
                    "{% if function %} {{ function }}{% endif %} leader. Based on your background, you came "
                    "to mind immediately.\n\n"
                    "Would it make sense for me to send over a few details so you can decide "
                    "if it's worth a conversation?"
                ),
            ),
            MessageTemplate(
                id="follow_up",
                action_type=ActionType.FOLLOW_UP,
                description="Follow-up when there was no reply",
                body=(
                    "Hey{% if first_name %} {{ first_name }}{% endif %}, just circling back on my last note.\n\n"
                    "The{% if role_level %} {{ role_level }}{% endif %}{% if function %} {{ function }}{% endif %} "
                    "role I mentioned is still open and the client is moving. If it's not relevant right now, "
                    "no worries at all.\n\n"
                    "Happy to share a one-pager if you're even mildly curious."
                ),
            ),
            MessageTemplate(
                id="inmail",
                action_type=ActionType.INMAIL,
                description="Last resort InMail",
                body=(
                    "Hi{% if first_name %} {{ first_name }}{% endif %},\n\n"
                    "I reached out via connection request recently but wanted to make sure this "
                    "hit your radar.\n\n"
                    "I'm a recruiting partner working exclusively with "
                    "{% if client_description_external %}{{ client_description_external }}"
                    "{% else %}one client{% endif %}. They're looking for a"
                    "{% if role_level %} {{ role_level }}{% endif %}{% if function %} {{ function }}{% endif %} leader"
                    "{% if industry %} with a background in {{ industry }}{% endif %}"
                    "{% if company_type %} at a {{ company_type }} company{% endif %}.\n\n"
                    "{% if role_one_liner %}The role is: {{ role_one_liner }}\n\n{% endif %}"
                    "If this is even a 6/10 interesting, I'd love to send more detail.\n\n"
                    "{{ recruiter_name }}"
                ),
            ),
            MessageTemplate(
                id="qualify_link",
                action_type=ActionType.MESSAGE,
                description="Reply to a positive response with the qualify link",
                body=(
                    "Great to hear from you{% if first_name %}, {{ first_name }}{% endif %}!\n\n"
                    "{% if qualify_link %}Here's a quick overview link with the role details and a few short "
                    "questions: {{ qualify_link }}{% else %}I'll send over the role details and a few short "
                    "questions shortly.{% endif %}\n\n"
                    "Once I see your responses I can set up a call and give you the full picture."
                ),
            ),
        ]
        for template in defaults:
            self.templates[template.id] = template

    def register_template(self, template: MessageTemplate) -> None:
        """Add or replace a template"""
        self.templates[template.id] = template
        logger.info(f"Registered message template: {template.id}")

    def get_template(self, template_id: str) -> MessageTemplate:
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Message template '{template_id}' not found")
        return template

    def list_templates(self) -> List[str]:
        return list(self.templates.keys())

    def render(self, template_id: str, context: Dict[str, Any]) -> str:
        """Render a template; unknown merge fields render empty."""
        template = self.get_template(template_id)
        return self.env.from_string(template.body).render(**context).strip()

    def _template_for(self, stage: PipelineStageTemplate, candidate: Candidate) -> str:
        if stage.template_id:
            return stage.template_id
        if stage.action_type == ActionType.CONNECTION_REQUEST and candidate.personalization_hook:
            return "connection_request_hook"
        return stage.action_type.value

    async def generate(
        self,
        stage: PipelineStageTemplate,
        candidate: Candidate,
        campaign: Campaign
    ) -> ProposedContent:
        if stage.action_type not in TEXT_ACTIONS:
            return ProposedContent(text="", reasoning=f"{stage.action_type.value} carries no text")

        template_id = self._template_for(stage, candidate)
        context = build_merge_context(candidate, campaign, self.recruiter_name, self.qualify_link)
        text = self.render(template_id, context)

        if stage.action_type == ActionType.CONNECTION_REQUEST and len(text) > MAX_CONNECTION_NOTE:
            text = text[:MAX_CONNECTION_NOTE - 3].rstrip() + "..."

        hook_note = ""
        if candidate.personalization_hook:
            hook_note = f"; hook: {candidate.personalization_hook}"
        return ProposedContent(
            text=text,
            reasoning=f"Rendered template '{template_id}' for stage '{stage.name}'{hook_note}",
        )
