"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, ConfigDict, model_validator

from streetpaddle.utils.constants import MAX_MESSAGE_LENGTH


# ============================================================================
# Groups and messages
# ============================================================================


class GroupCreateRequest(BaseModel):
    """Request to create a group chat. The caller is always added as a member."""

    member_ids: List[str] = Field(min_length=1)
    name: Optional[str] = None


class GroupMemberRequest(BaseModel):
    """Request to add a member to a group."""

    user_id: str


class GroupResponse(BaseModel):
    """Group chat with its members and latest message."""

    id: str
    name: Optional[str] = None
    creator_id: Optional[str] = None
    member_ids: List[str]
    latest_message: Optional[str] = None
    latest_message_at: Optional[str] = None
    created_at: Optional[str] = None


class MessageCreateRequest(BaseModel):
    """Request to post a message to a group."""

    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


class MessageResponse(BaseModel):
    """Group chat message."""

    id: int
    group_id: str
    sender_id: str
    text: str
    created_at: Optional[str] = None


class MarkReadResponse(BaseModel):
    """Watermark written by a mark-as-read call."""

    success: bool = True
    last_read_at: str


# ============================================================================
# Announcements
# ============================================================================


class AnnouncementCreateRequest(BaseModel):
    """Request to post to the announcement feed."""

    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


class AnnouncementResponse(BaseModel):
    """Announcement feed entry."""

    id: int
    sender_username: str
    content: str
    created_at: Optional[str] = None


# ============================================================================
# Unread counts
# ============================================================================


class UnreadSummaryResponse(BaseModel):
    """Unread counts per group plus announcements."""

    groups: Dict[str, int]
    announcements: int
    total: int


# ============================================================================
# Tournaments and draws
# ============================================================================


class TournamentCreateRequest(BaseModel):
    """Request to create a tournament configuration."""

    title: str = Field(min_length=1)
    number_of_players: int
    categories: List[str] = Field(min_length=1)
    start_date: datetime
    end_date: datetime
    link: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TournamentUpdateRequest(BaseModel):
    """Partial tournament update; omitted fields are unchanged."""

    title: Optional[str] = None
    number_of_players: Optional[int] = None
    categories: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    link: Optional[str] = None


class TournamentResponse(BaseModel):
    """Tournament configuration."""

    id: int
    title: str
    number_of_players: int
    categories: List[str]
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    link: Optional[str] = None
    created_at: Optional[str] = None


class SlotUpdateRequest(BaseModel):
    """Set a player name in a bracket slot. Any text is accepted, including empty."""

    round_index: int = Field(ge=0)
    slot_index: int = Field(ge=0)
    name: str


class ScoreUpdateRequest(BaseModel):
    """Set a score in a bracket slot. Any text is accepted, including empty."""

    round_index: int = Field(ge=0)
    slot_index: int = Field(ge=0)
    score: str


class ChampionUpdateRequest(BaseModel):
    """Fill in the declared champion."""

    name: str
    score: str = ""


class BracketRoundResponse(BaseModel):
    """One bracket round."""

    index: int
    key: str
    title: str
    player_names: List[str]
    scores: List[str]
    completed: bool
    version: int


class ChampionResponse(BaseModel):
    name: str
    score: str


class BracketResponse(BaseModel):
    """Bracket state plus which transitions are currently allowed."""

    model_config = ConfigDict(from_attributes=True)
    tournament_id: int
    category: str
    state: str
    player_count: int
    current_round: Optional[int] = None
    title: str
    rounds: List[BracketRoundResponse]
    champion: Optional[ChampionResponse] = None
    can_advance: bool
    can_declare_champion: bool
    can_go_back: bool
