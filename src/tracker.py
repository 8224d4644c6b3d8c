from typing import Dict, Optional
from urllib.parse import parse_qsl, urlsplit

import requests

from errors import SendFailure
from log_utils import VisitRecord, is_tracker_request


TRACKER_ENDPOINT = 'matomo.php'
DEFAULT_SITE_HOST = 'example.org'

# Parameters that pin a hit to the original request time or site.
DROPPED_PARAMS = ('cdt', 'idsite', 'token_auth', 'rec', 'send_image')


def build_tracking_params(
    record: VisitRecord,
    site_id: int,
    token_auth: Optional[str] = None,
    site_host: str = DEFAULT_SITE_HOST,
) -> Dict[str, str]:
    """
    Build Matomo tracking API parameters for a replayed log record.

    Tracker hits found in the log keep their own parameters; any other
    request becomes a page view of ``http://<site_host><path>``.

    Args:
        record: Parsed log record
        site_id: Site to track to, replaces any idsite in the log
        token_auth: Token needed for Matomo to accept the cip override
        site_host: Host used to build page view URLs

    Returns:
        Query parameters for one tracking request
    """
    if is_tracker_request(record.path):
        params = {
            k: v for k, v in parse_qsl(urlsplit(record.path).query, keep_blank_values=True)
            if k not in DROPPED_PARAMS
        }
    else:
        page = urlsplit(record.path).path or '/'
        params = {
            'url': f"http://{site_host}{record.path}",
            'action_name': page.strip('/') or 'index',
        }

    params['idsite'] = str(site_id)
    params['rec'] = '1'
    params['send_image'] = '0'
    if record.ip:
        params['cip'] = record.ip
    if record.user_agent:
        params.setdefault('ua', record.user_agent)
    if record.referer:
        params.setdefault('urlref', record.referer)
    if token_auth:
        params['token_auth'] = token_auth

    return params


class TrackingClient:
    """Sends one Matomo tracking request per visit record."""

    def __init__(
        self,
        matomo_url: str,
        site_id: int,
        token_auth: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
        site_host: str = DEFAULT_SITE_HOST,
    ):
        self.endpoint = f"{matomo_url.rstrip('/')}/{TRACKER_ENDPOINT}"
        self.site_id = site_id
        self.token_auth = token_auth
        self.timeout = timeout
        self.site_host = site_host
        self.session = session or requests.Session()

    def send(self, record: VisitRecord) -> int:
        """
        Track a single record.

        Returns:
            HTTP status code of the tracker response

        Raises:
            SendFailure: on connection errors, timeouts or non-2xx responses
        """
        params = build_tracking_params(record, self.site_id, self.token_auth, self.site_host)
        try:
            response = self.session.get(self.endpoint, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SendFailure(f"Tracking request failed for {record.ip} {record.path}: {exc}", record) from exc
        return response.status_code

    def __call__(self, record: VisitRecord) -> int:
        return self.send(record)

    def close(self):
        self.session.close()
