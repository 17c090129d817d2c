"""Pydantic v2 models for the Jira Cloud REST v3 issue API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JiraIssueFields(BaseModel):
    project: Dict[str, str]  # {"key": "SEC"}
    summary: str
    # Atlassian Document Format tree, see transformers.adf
    description: Dict[str, Any]
    issuetype: Dict[str, str]  # {"name": "Task"}
    priority: Dict[str, str]  # {"name": "High"}
    labels: List[str] = Field(default_factory=list)


class JiraIssueCreate(BaseModel):
    """Payload for POST /rest/api/3/issue."""

    fields: JiraIssueFields


class JiraIssueCreated(BaseModel):
    id: Optional[str] = None
    key: str
    self_url: Optional[str] = Field(default=None, alias="self")
