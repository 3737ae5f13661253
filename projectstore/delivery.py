import logging
import re
from dataclasses import dataclass

from .exceptions import DeliveryError


@dataclass(frozen=True)
class Delivery:
    project_id: str
    url: str
    filename: str
    delay_ms: int = 0


def download_filename(project):
    return re.sub(r'\s+', '_', project.name) + '.pdf'


class DeliveryExecutor:
    """Turns an entitled project into a download of its Drive file.

    Stateless, so repeated calls for the same project each start a new
    transfer. Completion is not tracked.
    """

    def __init__(self, download_url, view_url=None, notify=None, logger=None):
        self.download_url = download_url
        self.view_url_template = view_url
        self.notify = notify or (lambda message, category='info': None)
        self.logger = logger or logging.getLogger(__name__)

    def locator(self, project):
        if not project.asset_ref:
            raise DeliveryError(f'Project {project.id} has no file attached')
        return self.download_url.format(asset_ref=project.asset_ref)

    def view_url(self, project):
        if not self.view_url_template or not project.asset_ref:
            return None
        return self.view_url_template.format(asset_ref=project.asset_ref)

    def deliver(self, project, delay_ms=0):
        delivery = Delivery(
            project_id=project.id,
            url=self.locator(project),
            filename=download_filename(project),
            delay_ms=delay_ms,
        )
        self.logger.info(f"Starting download of project {project.id} ({delivery.filename})")
        self.notify('Download started! Check your downloads folder.', 'success')
        return delivery
