"""
Template extraction and application against a site session.

The request handler only depends on the ``TemplateExtractor`` and
``TemplateApplier`` interfaces. ``SiteTemplateExtractor`` and
``SiteTemplateApplier`` are the bundled SharePoint REST implementations and
cover web settings, lists and navigation.
"""
import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..models.provisioning import (
    ListDefinition, NavigationNode, ProgressStep, ProvisioningTemplate
)
from .session_service import SiteSession


SITE_TOKEN = '{site}'
NAVIGATION_COLLECTIONS = ('QuickLaunch', 'TopNavigationBar')


class ProgressListener:
    """Receives progress notifications from an extractor or applier."""

    def on_progress(self, message: str, current: int, total: int) -> None:
        raise NotImplementedError


class LoggingProgressListener(ProgressListener):
    """Writes every notification to the log as ``STAGE: 01/03 - message``."""

    def __init__(self, stage: str, logger: Optional[logging.Logger] = None):
        self.stage = stage
        self.logger = logger or logging.getLogger(__name__)

    def on_progress(self, message: str, current: int, total: int) -> None:
        self.logger.info(ProgressStep(self.stage, message, current, total).format())


class RecordingProgressListener(ProgressListener):
    """Keeps every notification so callers can inspect the reported steps."""

    def __init__(self, stage: str):
        self.stage = stage
        self.steps: List[ProgressStep] = []

    def on_progress(self, message: str, current: int, total: int) -> None:
        self.steps.append(ProgressStep(self.stage, message, current, total))


class CompositeProgressListener(ProgressListener):
    """Fans notifications out to several listeners."""

    def __init__(self, *listeners: ProgressListener):
        self.listeners = [listener for listener in listeners if listener is not None]

    def on_progress(self, message: str, current: int, total: int) -> None:
        for listener in self.listeners:
            listener.on_progress(message, current, total)


class TemplateExtractor:
    """Interface for producing a template from a source site."""

    def extract(self, session: SiteSession, listener: ProgressListener) -> Optional[ProvisioningTemplate]:
        raise NotImplementedError


class TemplateApplier:
    """Interface for applying a template to a target site."""

    def apply(self, session: SiteSession, template: ProvisioningTemplate,
              listener: ProgressListener, clear_navigation: bool = True) -> None:
        raise NotImplementedError


def tokenize_url(url: str, server_relative_url: str) -> str:
    """Replace a site's server-relative prefix with the site token."""
    prefix = server_relative_url.rstrip('/')
    if url == prefix or url.startswith(prefix + '/'):
        return SITE_TOKEN + url[len(prefix):]
    return url


def resolve_url(url: str, server_relative_url: str) -> str:
    """Replace the site token with a site's server-relative prefix."""
    if SITE_TOKEN not in url:
        return url
    return url.replace(SITE_TOKEN, server_relative_url.rstrip('/')) or '/'


def _run_steps(steps: List[Tuple[str, Callable[[], None]]], listener: ProgressListener):
    total = len(steps)
    for index, (message, step) in enumerate(steps, start=1):
        listener.on_progress(message, index, total)
        step()


class SiteTemplateExtractor(TemplateExtractor):
    """Extracts web settings, lists and navigation over SharePoint REST."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def extract(self, session: SiteSession, listener: ProgressListener) -> ProvisioningTemplate:
        template = ProvisioningTemplate(source_url=session.web_url)

        _run_steps([
            ("Web settings", lambda: self._extract_web_settings(session, template)),
            ("Lists", lambda: self._extract_lists(session, template)),
            ("Navigation", lambda: self._extract_navigation(session, template)),
        ], listener)

        return template

    def _extract_web_settings(self, session: SiteSession, template: ProvisioningTemplate):
        data = session.get_json('/_api/web', params={'$select': 'Title,Description'})
        template.web_settings = {
            key: data[key] for key in ('Title', 'Description') if data.get(key) is not None
        }

    def _extract_lists(self, session: SiteSession, template: ProvisioningTemplate):
        data = session.get_json('/_api/web/lists', params={
            '$select': 'Title,Description,BaseTemplate,EnableVersioning,ContentTypesEnabled,IsCatalog',
            '$filter': 'Hidden eq false',
        })

        template.lists = [
            ListDefinition(
                title=item['Title'],
                base_template=int(item['BaseTemplate']),
                description=item.get('Description') or '',
                enable_versioning=bool(item.get('EnableVersioning')),
                content_types_enabled=bool(item.get('ContentTypesEnabled'))
            )
            for item in data.get('value', [])
            if not item.get('IsCatalog')
        ]
        self.logger.debug(f"Extracted {len(template.lists)} lists from {session.web_url}")

    def _extract_navigation(self, session: SiteSession, template: ProvisioningTemplate):
        for collection in NAVIGATION_COLLECTIONS:
            data = session.get_json(f'/_api/web/navigation/{collection}', params={
                '$select': 'Title,Url,IsExternal,Children/Title,Children/Url,Children/IsExternal',
                '$expand': 'Children',
            })
            template.navigation[collection] = [
                self._to_node(item, session.server_relative_url) for item in data.get('value', [])
            ]

    def _to_node(self, item: Dict, server_relative_url: str) -> NavigationNode:
        is_external = bool(item.get('IsExternal'))
        url = item.get('Url') or ''
        children = item.get('Children') or []
        # Expanded collections come back either as a list or wrapped in 'value'
        if isinstance(children, dict):
            children = children.get('value', [])

        return NavigationNode(
            title=item.get('Title', ''),
            url=url if is_external else tokenize_url(url, server_relative_url),
            is_external=is_external,
            children=[self._to_node(child, server_relative_url) for child in children]
        )


class SiteTemplateApplier(TemplateApplier):
    """Applies web settings, lists and navigation over SharePoint REST."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def apply(self, session: SiteSession, template: ProvisioningTemplate,
              listener: ProgressListener, clear_navigation: bool = True) -> None:
        _run_steps([
            ("Web settings", lambda: self._apply_web_settings(session, template)),
            ("Lists", lambda: self._apply_lists(session, template)),
            ("Navigation", lambda: self._apply_navigation(session, template, clear_navigation)),
        ], listener)

    def _apply_web_settings(self, session: SiteSession, template: ProvisioningTemplate):
        if template.web_settings:
            session.post_json('/_api/web', dict(template.web_settings), method_override='MERGE')

    def _apply_lists(self, session: SiteSession, template: ProvisioningTemplate):
        data = session.get_json('/_api/web/lists', params={'$select': 'Title'})
        existing = {item['Title'] for item in data.get('value', [])}

        for list_definition in template.lists:
            if list_definition.title in existing:
                self.logger.debug(f"List '{list_definition.title}' already exists, skipping")
                continue

            session.post_json('/_api/web/lists', {
                'Title': list_definition.title,
                'Description': list_definition.description,
                'BaseTemplate': list_definition.base_template,
                'EnableVersioning': list_definition.enable_versioning,
                'ContentTypesEnabled': list_definition.content_types_enabled,
            })
            self.logger.info(f"Created list '{list_definition.title}' on {session.web_url}")

    def _apply_navigation(self, session: SiteSession, template: ProvisioningTemplate,
                          clear_navigation: bool):
        for collection in NAVIGATION_COLLECTIONS:
            if collection not in template.navigation:
                continue

            if clear_navigation:
                self._clear_collection(session, collection)

            for node in template.navigation[collection]:
                self._add_node(session, f'/_api/web/navigation/{collection}', node)

    def _clear_collection(self, session: SiteSession, collection: str):
        data = session.get_json(f'/_api/web/navigation/{collection}', params={'$select': 'Id'})
        for item in data.get('value', []):
            session.delete(f"/_api/web/navigation/GetNodeById({item['Id']})")

    def _add_node(self, session: SiteSession, path: str, node: NavigationNode):
        created = session.post_json(path, {
            'Title': node.title,
            'Url': node.url if node.is_external else resolve_url(node.url, session.server_relative_url),
            'IsExternal': node.is_external,
        })

        if node.children:
            node_id = created.get('Id')
            if node_id is None:
                self.logger.warning(f"Navigation node '{node.title}' returned no id, skipping its children")
                return
            for child in node.children:
                self._add_node(session, f'/_api/web/navigation/GetNodeById({node_id})/Children', child)
