"""Confluence Cloud REST API client with retry logic and error handling."""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from models import ConfluenceAttachment, ConfluencePage, PageURLInfo

__version__ = "1.0.0"

logger = logging.getLogger('confluence_md.client')

PAGE_EXPANSIONS = ['body.storage', 'metadata.labels', 'version', 'space', 'history', 'children.attachment']
CHILD_PAGE_EXPANSIONS = ['body.storage', 'metadata.labels', 'version', 'space', 'history']
CHILD_PAGE_LIMIT = 100


class ConfluenceAPIError(requests.exceptions.HTTPError):
    """Raised when the Confluence API answers with an unexpected status."""

    def __init__(self, message: str, status_code: Optional[int] = None, operation: str = '', response=None):
        super().__init__(message, response=response)
        self.status_code = status_code
        self.operation = operation


def parse_page_url(page_url: str) -> PageURLInfo:
    """
    Split a Confluence page URL into its parts.

    Example: https://example.atlassian.net/wiki/spaces/SPACE/pages/12345/Title

    Args:
        page_url: Browser URL of the page

    Returns:
        PageURLInfo with base URL, page ID, space key and decoded title

    Raises:
        ValueError: If the URL is empty or carries no page ID
    """
    if not page_url:
        raise ValueError("URL is empty")

    try:
        parsed = urlparse(page_url)
    except ValueError as e:
        raise ValueError(f"invalid URL: {e}") from e
    if page_url.startswith('://') or (parsed.netloc and not parsed.scheme):
        raise ValueError(f"invalid URL: {page_url}")

    space_key = ''
    page_id = ''
    title = ''
    parts = parsed.path.split('/')
    for index, part in enumerate(parts):
        if part == 'spaces' and index + 1 < len(parts):
            space_key = parts[index + 1]
        if part == 'pages' and index + 1 < len(parts):
            page_id = parts[index + 1]
        if index == len(parts) - 1:
            title = unquote(part)

    if not page_id:
        raise ValueError("could not extract page ID from URL")

    return PageURLInfo(
        base_url=f"{parsed.scheme}://{parsed.netloc}",
        page_id=page_id,
        space_key=space_key,
        title=title
    )


def normalize_download_link(base_url: str, link: str) -> str:
    """
    Turn an attachment download link into an absolute URL.

    Relative links from the API may lack the leading slash or the /wiki
    prefix, and may contain raw spaces.
    """
    if link.startswith('http://') or link.startswith('https://'):
        return link

    if not link.startswith('/'):
        link = '/' + link
    if link.startswith('/download/'):
        link = '/wiki' + link
    link = link.replace(' ', '%20')

    return base_url.rstrip('/') + link


class ConfluenceClient:
    """Confluence REST API client with basic authentication and retries for transient errors."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_backoff_factor: float = 1.0,
        verify_ssl: bool = True
    ):
        """
        Initialize Confluence client.

        Args:
            base_url: Confluence site root (e.g., "https://example.atlassian.net")
            email: Account email for basic auth
            api_token: API token for basic auth
            timeout: HTTP request timeout in seconds
            max_retries: Maximum retry attempts for transient errors
            retry_backoff_factor: Exponential backoff factor
            verify_ssl: Whether to verify SSL certificates
        """
        if not base_url:
            raise ValueError("base_url is required")
        if not email or not api_token:
            raise ValueError("Basic auth requires email and api_token")

        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_factor = retry_backoff_factor

        self.session = requests.Session()
        self.session.auth = (email, api_token)
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': f'confluence-md/{__version__}'
        })

        self.session.verify = verify_ssl
        if not verify_ssl:
            logger.warning("SSL verification disabled - this is insecure!")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        logger.debug(f"Client configured for {self.base_url} with timeout={timeout}s, "
                     f"max_retries={max_retries}, backoff_factor={retry_backoff_factor}")

    def _make_request(self, operation: str, url: str, **kwargs) -> requests.Response:
        """
        Make a GET request and check for a 200 response.

        Args:
            operation: Description used in error messages (e.g., "get page")
            url: Absolute request URL
            **kwargs: Additional arguments for requests

        Returns:
            Response object

        Raises:
            ConfluenceAPIError: For non-200 responses
            requests.exceptions.RequestException: For transport errors
        """
        start_time = time.time()
        logger.debug(f"API Request: GET {url}")

        try:
            response = self.session.get(url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            logger.error(f"Request timeout after {self.timeout}s: GET {url}")
            raise
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error: GET {url} - {str(e)}")
            raise

        elapsed = time.time() - start_time
        logger.debug(f"API Response: {response.status_code} {url} ({elapsed:.3f}s)")

        if response.status_code != 200:
            raise self._error_from_response(response, operation)
        return response

    @staticmethod
    def _error_from_response(response: requests.Response, operation: str) -> ConfluenceAPIError:
        """Build the error for a failed response, preferring the API's own message."""
        message = None
        try:
            error_json = response.json()
            if isinstance(error_json, dict) and error_json.get('message'):
                message = error_json['message']
        except ValueError:
            pass

        if message:
            text = f"failed to {operation}: {message}"
        else:
            text = f"failed to {operation}: HTTP {response.status_code} - {response.text}"

        logger.error(text)
        return ConfluenceAPIError(text, status_code=response.status_code, operation=operation, response=response)

    def get_page_data(self, page_id: str) -> Dict[str, Any]:
        """Fetch the raw JSON of a page with body, labels, version, space, history and attachments."""
        response = self._make_request(
            'get page',
            f"{self.base_url}/wiki/rest/api/content/{page_id}",
            params={'expand': ','.join(PAGE_EXPANSIONS)}
        )
        return response.json()

    def get_page(self, page_id: str) -> ConfluencePage:
        """
        Fetch a single page.

        Args:
            page_id: Confluence page ID

        Returns:
            ConfluencePage built from the API response

        Raises:
            ConfluenceAPIError: For 404 or other HTTP errors
        """
        page = ConfluencePage.from_api_response(self.get_page_data(page_id))
        logger.info(f"Fetched page {page.id} ('{page.title}')")
        return page

    def get_child_pages(self, page_id: str) -> List[ConfluencePage]:
        """
        Get direct child pages of a page, following pagination.

        Args:
            page_id: Parent page ID

        Returns:
            List of child pages in API order
        """
        children = []
        start = 0

        while True:
            params = {
                'expand': ','.join(CHILD_PAGE_EXPANSIONS),
                'limit': CHILD_PAGE_LIMIT,
                'start': start
            }
            response = self._make_request(
                'get child pages',
                f"{self.base_url}/wiki/rest/api/content/{page_id}/child/page",
                params=params
            )
            data = response.json()

            results = data.get('results') or []
            children.extend(ConfluencePage.from_api_response(item) for item in results)

            limit = data.get('limit') or CHILD_PAGE_LIMIT
            if not results or len(results) < limit:
                break
            start += len(results)

        logger.debug(f"Fetched {len(children)} children for page {page_id}")
        return children

    def download_attachment(self, attachment: ConfluenceAttachment) -> bytes:
        """
        Download attachment content.

        Args:
            attachment: Attachment with a download link from the API

        Returns:
            Attachment binary data

        Raises:
            ValueError: If the attachment has no download link
            ConfluenceAPIError: For non-200 responses
            requests.exceptions.RequestException: For transport errors
        """
        if attachment is None:
            raise ValueError("attachment is None")
        if not attachment.download_url:
            raise ValueError(f"attachment {attachment.title} has no download link")

        url = normalize_download_link(self.base_url, attachment.download_url)
        response = self._make_request('download attachment', url, headers={'Accept': '*/*'})
        logger.debug(f"Downloaded attachment '{attachment.title}' ({len(response.content)} bytes)")
        return response.content

    def download_url(self, url: str) -> Tuple[bytes, Optional[str]]:
        """
        Download a file from an absolute URL with the client credentials.

        Args:
            url: Absolute URL, e.g. an image origin URL from a converted document

        Returns:
            (content, content type header or None)

        Raises:
            ConfluenceAPIError: For non-200 responses
            requests.exceptions.RequestException: For transport errors
        """
        response = self._make_request('download file', url, headers={'Accept': '*/*'})
        content_type = response.headers.get('Content-Type') or None
        logger.debug(f"Downloaded {url} ({len(response.content)} bytes, {content_type})")
        return response.content, content_type

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ConfluenceClient':
        """
        Initialize Confluence client from configuration dictionary.

        Args:
            config: Configuration dictionary with a confluence section

        Returns:
            ConfluenceClient instance
        """
        confluence_config = config.get('confluence', {})

        return cls(
            base_url=confluence_config.get('base_url'),
            email=confluence_config.get('email'),
            api_token=confluence_config.get('api_token'),
            timeout=confluence_config.get('timeout', 60),
            max_retries=confluence_config.get('max_retries', 3),
            retry_backoff_factor=confluence_config.get('retry_backoff_factor', 1.0),
            verify_ssl=confluence_config.get('verify_ssl', True)
        )


__all__ = ['ConfluenceAPIError', 'ConfluenceClient', 'normalize_download_link', 'parse_page_url']
