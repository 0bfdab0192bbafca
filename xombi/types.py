"""
Pydantic models and enums shared across xombi.

Wire models use camelCase aliases (the gateway and Ombi both speak
camelCase JSON) and Pythonic snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator


# ============================================================
#  Enums
# ============================================================


class MediaKind(str, Enum):
    """Catalog media kinds. Item ids are only unique within a kind."""

    MOVIE = "movie"
    TV = "tv"


class WorkflowState(Enum):
    """Where a user is in the search → select → request workflow."""

    UNSPECIFIED = 0
    AWAITING_MOVIE_SELECTION = 1
    AWAITING_TV_SELECTION = 2


class ConversationKind(str, Enum):
    """Conversation kinds, resolved once at the transport boundary."""

    DM = "dm"
    GROUP = "group"


class IdentifierKind(str, Enum):
    ETHEREUM = "ethereum"
    PASSKEY = "passkey"


class RequestOutcome(Enum):
    """Result of submitting a request to the catalog backend."""

    SUBMITTED = "submitted"
    ALREADY_REQUESTED = "already_requested"
    NO_PERMISSION = "no_permission"


# ============================================================
#  Messaging
# ============================================================


class AccountIdentifier(BaseModel):
    """An identifier attached to a messaging inbox."""

    identifier: str
    identifier_kind: str = Field(alias="identifierKind")

    model_config = {"populate_by_name": True}


class ConversationMember(BaseModel):
    """A conversation participant and the identifiers it controls."""

    inbox_id: str = Field(alias="inboxId")
    account_identifiers: list[AccountIdentifier] = Field(
        default_factory=list, alias="accountIdentifiers"
    )
    installation_ids: list[str] = Field(default_factory=list, alias="installationIds")

    model_config = {"populate_by_name": True}


class ConversationInfo(BaseModel):
    """Conversation summary as returned by the gateway."""

    id: str
    kind: ConversationKind = ConversationKind.GROUP
    peer_inbox_id: str | None = Field(None, alias="peerInboxId")
    created_at: str | None = Field(None, alias="createdAt")

    model_config = {"populate_by_name": True}


class ContentType(BaseModel):
    type_id: str = Field(alias="typeId")
    authority_id: str | None = Field(None, alias="authorityId")

    model_config = {"populate_by_name": True}


class InboundMessage(BaseModel):
    """A decoded message from the message stream."""

    id: str
    conversation_id: str = Field(alias="conversationId")
    sender_inbox_id: str = Field(alias="senderInboxId")
    content_type: ContentType | None = Field(None, alias="contentType")
    content: Any = None
    sent_at: str | None = Field(None, alias="sentAt")

    model_config = {"populate_by_name": True}

    @property
    def is_text(self) -> bool:
        return (
            self.content_type is not None
            and self.content_type.type_id == "text"
            and isinstance(self.content, str)
        )


class Installation(BaseModel):
    id: str
    client_timestamp_ns: int | None = Field(None, alias="clientTimestampNs")

    model_config = {"populate_by_name": True}


class InboxState(BaseModel):
    """Installations currently registered for an inbox."""

    inbox_id: str = Field(alias="inboxId")
    installations: list[Installation] = []
    account_identifiers: list[AccountIdentifier] = Field(
        default_factory=list, alias="accountIdentifiers"
    )

    model_config = {"populate_by_name": True}


class SignatureRequest(BaseModel):
    """Text the gateway wants signed before it acts on an identity."""

    inbox_id: str | None = Field(None, alias="inboxId")
    signature_text: str = Field(alias="signatureText")

    model_config = {"populate_by_name": True}


class RegistrationResult(BaseModel):
    inbox_id: str = Field(alias="inboxId")
    installation_id: str = Field(alias="installationId")
    token: str

    model_config = {"populate_by_name": True}


# ============================================================
#  Catalog
# ============================================================


class MovieSearchResult(BaseModel):
    """A movie search result."""

    id: str
    title: str

    def list_text(self) -> str:
        return self.title


class TvSearchResult(BaseModel):
    """A TV show search result with its details."""

    id: str
    title: str
    first_aired: datetime | None = None
    season_count: int = 0
    status: str = ""

    def list_text(self) -> str:
        season_text = "season" if self.season_count == 1 else "seasons"
        year = self.first_aired.year if self.first_aired else "unknown"
        return f"{self.title} ({year}) ({self.season_count} {season_text}, {self.status})"


ListableResult = Union[MovieSearchResult, TvSearchResult]


class WebhookSettings(BaseModel):
    """Webhook registration as stored by Ombi."""

    enabled: bool = False
    webhook_url: str | None = Field(None, alias="webhookUrl")
    application_token: str | None = Field(None, alias="applicationToken")

    model_config = {"populate_by_name": True}


class WebhookPayload(BaseModel):
    """Notification body posted by Ombi's webhook agent."""

    request_id: int | None = Field(None, alias="requestId")
    requested_user: str | None = Field(None, alias="requestedUser")
    title: str | None = None
    requested_date: str | None = Field(None, alias="requestedDate")
    type: str | None = None
    additional_information: str | None = Field(None, alias="additionalInformation")
    overview: str | None = None
    year: int | None = None
    episodes_list: str | None = Field(None, alias="episodesList")
    seasons_list: str | None = Field(None, alias="seasonsList")
    poster_image: str | None = Field(None, alias="posterImage")
    application_name: str | None = Field(None, alias="applicationName")
    application_url: str | None = Field(None, alias="applicationUrl")
    user_name: str | None = Field(None, alias="userName")
    alias: str | None = None
    requested_by_alias: str | None = Field(None, alias="requestedByAlias")
    deny_reason: str | None = Field(None, alias="denyReason")
    available_date: str | None = Field(None, alias="availableDate")
    request_status: str | None = Field(None, alias="requestStatus")
    provider_id: str | int | None = Field(None, alias="providerId")
    partially_available_episode_numbers: str | None = Field(
        None, alias="partiallyAvailableEpisodeNumbers"
    )
    partially_available_season_number: int | None = Field(
        None, alias="partiallyAvailableSeasonNumber"
    )
    partially_available_episodes_list: str | None = Field(
        None, alias="partiallyAvailableEpisodesList"
    )
    partially_available_episode_count: int | None = Field(
        None, alias="partiallyAvailableEpisodeCount"
    )
    notification_type: str | None = Field(None, alias="notificationType")

    model_config = {"populate_by_name": True}

    @field_validator(
        "request_id",
        "year",
        "partially_available_season_number",
        "partially_available_episode_count",
        mode="before",
    )
    @classmethod
    def _lenient_int(cls, value: Any) -> Any:
        # Ombi fills these from text placeholders, so blanks and junk arrive
        # as strings. None of them decide whether a notice is handled.
        if isinstance(value, str):
            value = value.strip()
            return int(value) if value.lstrip("-").isdigit() else None
        return value
