"""Pydantic schemas for API request/response models."""

from .readings import *
from .machines import *
from .system import *
