"""Voice CRM LLM - Transcript extraction, qualification, and sales briefs."""

from .llm_providers import get_llm_provider
from .extraction import ExtractionEngine, basic_extraction, normalize_extracted_data
from .brief_generator import BriefGenerator, generate_basic_brief, render_pre_call_note
from .qualification import qualifies, should_generate_brief, lead_quality_tier

__all__ = [
    "get_llm_provider",
    "ExtractionEngine",
    "basic_extraction",
    "normalize_extracted_data",
    "BriefGenerator",
    "generate_basic_brief",
    "render_pre_call_note",
    "qualifies",
    "should_generate_brief",
    "lead_quality_tier",
]
