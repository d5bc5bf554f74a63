"""Shared fixtures for voice_crm tests."""

from __future__ import annotations

from datetime import datetime

import pytest

from voice_crm.core.config import Settings

from .fakes import REFERENCE_MONDAY, InMemoryRecordStore, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def reference_monday() -> datetime:
    return REFERENCE_MONDAY
