"""
Typed response models for the remote integration clients.

Date fields coming from remote APIs are kept as raw strings; the bridges
parse them and count anything unparseable as skipped.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RemoteModel(BaseModel):
    """Base for remote payloads: unknown fields ignored, aliases or names accepted."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# Canvas

class CanvasCourse(RemoteModel):
    id: int
    name: Optional[str] = None
    course_code: Optional[str] = None


class CanvasAssignment(RemoteModel):
    id: int
    course_id: int
    name: str
    due_at: Optional[str] = None
    points_possible: Optional[float] = None
    html_url: Optional[str] = None


# Blackboard

class BlackboardCourse(RemoteModel):
    id: str
    name: Optional[str] = None
    course_id: Optional[str] = Field(default=None, alias="courseId")


class BlackboardAdaptiveRelease(RemoteModel):
    end: Optional[str] = None


class BlackboardAvailability(RemoteModel):
    adaptive_release: Optional[BlackboardAdaptiveRelease] = Field(default=None, alias="adaptiveRelease")


class BlackboardScore(RemoteModel):
    possible: Optional[float] = None


class BlackboardAssignment(RemoteModel):
    id: str
    title: str
    course_id: Optional[str] = Field(default=None, alias="courseId")
    availability: Optional[BlackboardAvailability] = None
    score: Optional[BlackboardScore] = None

    @property
    def due(self) -> Optional[str]:
        if self.availability and self.availability.adaptive_release:
            return self.availability.adaptive_release.end
        return None


# Microsoft Teams (Graph Education API)

class TeamsClass(RemoteModel):
    id: str
    display_name: Optional[str] = Field(default=None, alias="displayName")


class TeamsGrading(RemoteModel):
    max_points: Optional[float] = Field(default=None, alias="maxPoints")


class TeamsAssignment(RemoteModel):
    id: str
    display_name: str = Field(alias="displayName")
    class_id: Optional[str] = Field(default=None, alias="classId")
    due_date_time: Optional[str] = Field(default=None, alias="dueDateTime")
    status: Optional[str] = None
    grading: Optional[TeamsGrading] = None


# GitHub course repositories

class CourseRepo(RemoteModel):
    owner: str
    repo: str
    course: str


class RepoReadme(RemoteModel):
    path: str
    content: str


class GitHubDeadline(RemoteModel):
    """A deadline row parsed out of a course repository README."""
    remote_id: str
    course: str
    task: str
    due: Optional[str] = None


class GitHubCourseData(RemoteModel):
    repos: List[CourseRepo] = Field(default_factory=list)
    deadlines: List[GitHubDeadline] = Field(default_factory=list)


# iCal calendars (TP, TimeEdit)

class CalendarEvent(RemoteModel):
    """One VEVENT occurrence. ``start_time`` is None when DTSTART could not be read."""
    summary: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    uid: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
