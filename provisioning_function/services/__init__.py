"""
Services package for the provisioning function.
"""

from .config_service import ConfigService
from .extract_apply_service import ExtractAndApplyService
from .session_service import SessionFactory, SharePointSessionFactory, SiteSession
from .provisioning_engine import (
    ProgressListener, LoggingProgressListener, RecordingProgressListener,
    TemplateExtractor, TemplateApplier, SiteTemplateExtractor, SiteTemplateApplier
)

__all__ = [
    'ConfigService',
    'ExtractAndApplyService',
    'SessionFactory',
    'SharePointSessionFactory',
    'SiteSession',
    'ProgressListener',
    'LoggingProgressListener',
    'RecordingProgressListener',
    'TemplateExtractor',
    'TemplateApplier',
    'SiteTemplateExtractor',
    'SiteTemplateApplier'
]
