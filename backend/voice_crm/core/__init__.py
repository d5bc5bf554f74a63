"""Voice CRM Core - Configuration, Models, and Record Store."""

from .config import Settings, get_settings
from .models import CallRecord, CallStatus, ExtractedFacts, Lead, LeadNote, AppointmentRecord, TaskRecord
from .brief_models import Brief
from .db import RecordStore, SupabaseRecordStore, StoreError, DuplicateRecordError, get_store, close_store

__all__ = [
    "Settings",
    "get_settings",
    "CallRecord",
    "CallStatus",
    "ExtractedFacts",
    "Lead",
    "LeadNote",
    "AppointmentRecord",
    "TaskRecord",
    "Brief",
    "RecordStore",
    "SupabaseRecordStore",
    "StoreError",
    "DuplicateRecordError",
    "get_store",
    "close_store",
]
