"""
Notification event payloads.

Each model mirrors the JSON body the web client posts (camelCase keys) and
is validated before anything is rendered or sent.
"""

from typing import Annotated, Optional, Union

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, HttpUrl


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Absolute http(s) link, kept as a plain string for the templates
WebLink = Annotated[HttpUrl, AfterValidator(str)]
OptionalLink = Annotated[Optional[WebLink], BeforeValidator(_blank_to_none)]


class EventModel(BaseModel):
    """Base for payload models: accepts camelCase aliases or field names."""
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
    )


class BlogPost(EventModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    content: str
    seo_description: Optional[str] = Field(default=None, alias="seoDescription")

    @property
    def summary(self) -> str:
        """Teaser shown in the notification: SEO description or first 150 chars."""
        return self.seo_description or self.content[:150]


class BlogPublished(EventModel):
    blog: BlogPost


class CaseStatusDetails(EventModel):
    tracking_id: str = Field(alias="trackingId", min_length=1)
    status: str = Field(min_length=1)
    status_notes: Optional[str] = Field(default=None, alias="statusNotes")


class CaseUpdated(EventModel):
    case_details: CaseStatusDetails = Field(alias="caseDetails")
    user_email: EmailStr = Field(alias="userEmail")


class AssignmentCaseDetails(EventModel):
    tracking_id: str = Field(alias="trackingId", min_length=1)
    location: str
    incident_type: str = Field(alias="incidentType")
    priority: str
    description: str


class OfficerDetails(EventModel):
    name: str
    badge_number: str = Field(alias="badgeNumber")
    station: Optional[str] = None


class OfficerAssigned(EventModel):
    case_details: AssignmentCaseDetails = Field(alias="caseDetails")
    officer_email: EmailStr = Field(alias="officerEmail")
    officer_details: OfficerDetails = Field(alias="officerDetails")


class SubscriptionConfirmed(EventModel):
    email: EmailStr


class ContactFormSubmitted(EventModel):
    name: str = Field(min_length=1)
    email: EmailStr
    message: str = Field(min_length=1)


class AdminAlert(EventModel):
    alert_type: str = Field(alias="type", min_length=1)
    message: str
    link: OptionalLink = None


class AssignmentDetails(EventModel):
    """Report details for the standalone assignment email."""
    status: str
    incident_type: str = Field(alias="incidentType")
    location: str
    county: str
    date: str
    time: str
    description: str
    evidence_url: OptionalLink = Field(default=None, alias="evidenceUrl")
    additional_notes: Optional[str] = Field(default=None, alias="additionalNotes")
    assigned_at: str = Field(alias="assignedAt")
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")


class AssignmentEmailRequest(EventModel):
    officer_email: EmailStr = Field(alias="officerEmail")
    report_details: AssignmentDetails = Field(alias="reportDetails")


NotificationEvent = Union[
    BlogPublished,
    CaseUpdated,
    OfficerAssigned,
    SubscriptionConfirmed,
    ContactFormSubmitted,
    AdminAlert,
    AssignmentEmailRequest,
]
