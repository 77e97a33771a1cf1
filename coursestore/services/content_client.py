# coursestore/services/content_client.py
import requests
from requests import RequestException
from requests.utils import quote

from coursestore.domain.errors import NotFound, UpstreamFailure, ValidationError
from coursestore.domain.schemas import BundleRecord, CourseRecord, ItemKind
from coursestore.utils.retry import http_retry
from coursestore.utils.settings import CONTENT_SERVICE_URL
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


class ContentClient:
    """
    Read-only catalog lookups against the content service.
    Records are point-in-time snapshots, nothing is cached here.
    """

    def __init__(self, base_url: str | None = None, timeout: int = 2):
        self.base_url = (base_url or CONTENT_SERVICE_URL).rstrip("/")
        self.timeout = timeout

    @http_retry()
    def _get(self, path: str) -> dict | None:
        url = f"{self.base_url}{path}"
        logger.info(f"ContentClient GET {url}")

        resp = requests.get(url, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def _fetch(self, path: str, what: str) -> dict:
        try:
            data = self._get(path)
        except RequestException as e:
            logger.exception(f"Content service lookup failed for {what}")
            raise UpstreamFailure(f"Could not load {what} from the catalog") from e

        if data is None:
            raise NotFound(f"{what.capitalize()} not found")
        return data

    def fetch_course(self, course_id: str) -> CourseRecord:
        return CourseRecord.model_validate(self._fetch(f"/courses/{quote(course_id, safe='')}", f"course {course_id}"))

    def fetch_bundle(self, bundle_id: str) -> BundleRecord:
        return BundleRecord.model_validate(self._fetch(f"/bundles/{quote(bundle_id, safe='')}", f"bundle {bundle_id}"))

    def fetch_item(self, kind: ItemKind | str, item_id: str) -> CourseRecord | BundleRecord:
        kind = ItemKind(kind)
        if kind == ItemKind.COURSE:
            return self.fetch_course(item_id)
        if kind == ItemKind.BUNDLE:
            return self.fetch_bundle(item_id)
        raise ValidationError(f"Unknown item kind: {kind}")
