"""
Default HTTP transport for the service order backend.

Every collaborator the engine needs (descriptor source, parent record
persistence, attachment storage, related entity lookup and nested line
deletion) is exposed here on top of ``requests``. The engine components only
depend on the method names, so tests inject plain mocks instead.
"""

from typing import Any, Dict, List, Optional
import logging
import time

import requests

from .errors import ApiError
from .order_env import OrderEnv
from .order_logging import create_logger

OCTET_STREAM = "application/octet-stream"


def normalize_list_response(res: Any) -> List[Any]:
    """Unwrap list payloads that come either bare or under one or two ``data`` keys."""
    if not res:
        return []
    if isinstance(res, list):
        return res
    if isinstance(res, dict):
        data = res.get("data")
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
    return []


class OrderApi:

    SERVICE_ORDER_PATH = '/inspection/service-order'
    SERVICE_TYPE_PATH = '/admin/service-type'
    ATTACHMENT_UPLOAD_PATH = '/admin/attachment/upload'
    ATTACHMENT_PATH = '/admin/attachment'
    ATTACHMENT_DOWNLOAD_PATH = '/admin/attachment/download'
    PAYMENT_PATH = '/inspection/service-order-payment'
    SCHEDULE_PATH = '/inspection/service-order-schedule'
    ADMIN_PATH = '/admin'

    RETRYABLE_STATUS = (502, 503, 504)
    # writes are sent once: a gateway error may come after the server committed
    RETRYABLE_METHODS = ('GET', 'HEAD', 'DELETE')

    def __init__(self, base_url: str = None, token: str = None, logger: logging.Logger = None,
                 timeout: float = None, retries: int = None, retry_delay_ms: int = None,
                 session: requests.Session = None):
        OrderEnv.load_env()
        self.base_url = (base_url or OrderEnv.get_api_base_url()).rstrip('/')
        self.token = token if token is not None else OrderEnv.get_api_token()
        self.logger = logger or create_logger('order_engine.api')
        self.timeout = timeout if timeout is not None else OrderEnv.get_api_timeout()
        self.retries = retries if retries is not None else OrderEnv.get_api_retries()
        self.retry_delay_ms = retry_delay_ms if retry_delay_ms is not None else OrderEnv.get_api_retry_delay_ms()
        self.session = session or requests.Session()

    # ----------------------------- Transport ---------------------------------

    def __auth_headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {'Authorization': f'Bearer {self.token}'}

    def api_request(self, method: str, path: str, body: Any = None, params: Dict[str, Any] = None,
                    headers: Dict[str, str] = None) -> requests.Response:
        url = self.base_url + path
        _headers = {**self.__auth_headers(), **(headers or {})}
        attempt = 0
        retries = self.retries if method.upper() in self.RETRYABLE_METHODS else 0
        while True:
            self.logger.log(logging.DEBUG, f'API: Sending {method} to endpoint "{url}" with: body: {body} uriParams {params}')
            try:
                response = self.session.request(method, url, json=body, params=params, headers=_headers, timeout=self.timeout)
            except requests.RequestException as e:
                if attempt < retries:
                    attempt += 1
                    time.sleep(self.retry_delay_ms / 1000.0)
                    continue
                self.logger.log(logging.ERROR, f'API: {method} to endpoint "{url}" failed: {e}')
                raise ApiError(str(e)) from e

            if response.status_code in self.RETRYABLE_STATUS and attempt < retries:
                attempt += 1
                time.sleep(self.retry_delay_ms / 1000.0)
                continue

            if not response.ok:
                self.logger.log(logging.ERROR, f'API: {method} to endpoint "{url}" with payload {body} returned status code {response.status_code} response: {response.text}')
                raise self.__to_api_error(response)
            return response

    @staticmethod
    def __to_api_error(response: requests.Response) -> ApiError:
        details = None
        message = f'HTTP {response.status_code}'
        try:
            details = response.json()
        except ValueError:
            details = response.text
        if isinstance(details, dict) and isinstance(details.get('message'), str):
            message = details['message']
        return ApiError(message, status=response.status_code, details=details)

    @staticmethod
    def __json(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def api_get(self, path: str, params: Dict[str, Any] = None) -> Any:
        return self.__json(self.api_request('GET', path, params=params))

    def api_post(self, path: str, body: Any = None) -> Any:
        return self.__json(self.api_request('POST', path, body=body))

    def api_put(self, path: str, body: Any = None) -> Any:
        return self.__json(self.api_request('PUT', path, body=body))

    def api_delete(self, path: str) -> Any:
        return self.__json(self.api_request('DELETE', path))

    # ----------------------------- Classifications ---------------------------

    def list_service_types(self) -> List[Dict[str, Any]]:
        return normalize_list_response(self.api_get(self.SERVICE_TYPE_PATH))

    def get_service_type_fields(self, service_type_id: str) -> List[Dict[str, Any]]:
        """Raw field descriptors for one classification."""
        body = self.api_get(f'{self.SERVICE_TYPE_PATH}/{service_type_id}')
        if isinstance(body, dict):
            if isinstance(body.get('service_type_fields'), list):
                return body['service_type_fields']
            data = body.get('data')
            if isinstance(data, dict) and isinstance(data.get('service_type_fields'), list):
                return data['service_type_fields']
        if isinstance(body, list):
            return body
        self.logger.warning(f'get_service_type_fields: no field list for service type {service_type_id}')
        return []

    # ----------------------------- Parent record -----------------------------

    @staticmethod
    def __unwrap_record(body: Any) -> Any:
        if isinstance(body, dict) and isinstance(body.get('data'), dict) and 'id' not in body:
            return body['data']
        return body

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.__unwrap_record(self.api_get(f'{self.SERVICE_ORDER_PATH}/{order_id}'))
        except ApiError as e:
            if e.status == 404:
                return None
            raise

    def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.__unwrap_record(self.api_post(self.SERVICE_ORDER_PATH, payload))

    def update_order(self, order_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.__unwrap_record(self.api_put(f'{self.SERVICE_ORDER_PATH}/{order_id}', payload))

    # ----------------------------- Attachments -------------------------------

    def presign(self, filename: str, path: str) -> Dict[str, Any]:
        """Ask for a one-time write location. Returns ``{filename, upload_url}``."""
        body = self.api_post(self.ATTACHMENT_UPLOAD_PATH, {'filename': filename, 'path': path})
        self.logger.info(f'presign response for {filename}: {body}')
        if not isinstance(body, dict):
            raise ApiError(f'Unexpected presign response for {filename}', details=body)
        presign_data = body.get('presign_data') or {}
        upload_url = body.get('upload_url') or presign_data.get('url')
        return {'filename': body.get('filename') or filename, 'upload_url': upload_url}

    def upload_to_presign(self, url: str, content: bytes, content_type: str = None) -> None:
        """Direct byte upload. No application credentials go to the storage host."""
        headers = {'Content-Type': content_type or OCTET_STREAM}
        try:
            response = self.session.put(url, data=content, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.log(logging.ERROR, f'upload_to_presign error for url {url}: {e}')
            raise ApiError(str(e)) from e
        if not response.ok:
            self.logger.log(logging.ERROR, f'upload_to_presign returned status code {response.status_code} for url {url}')
            raise ApiError(f'Upload failed with HTTP {response.status_code}', status=response.status_code, details=response.text)
        self.logger.info(f'upload_to_presign success for url {url}')

    def delete_attachment(self, attachment_id: str) -> Any:
        return self.api_delete(f'{self.ATTACHMENT_PATH}/{attachment_id}')

    def resolve_read_url(self, attachment_id: str) -> str:
        """Short lived read URL for a persisted attachment."""
        body = self.api_post(self.ATTACHMENT_DOWNLOAD_PATH, {'attachment_id': attachment_id})
        if isinstance(body, str) and body:
            return body
        if isinstance(body, dict) and isinstance(body.get('url'), str):
            return body['url']
        raise ApiError(f'No download url returned for attachment {attachment_id}', details=body)

    def fetch_bytes(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiError(str(e)) from e
        if not response.ok:
            raise ApiError(f'Download failed with HTTP {response.status_code}', status=response.status_code)
        return response.content

    # ----------------------------- Nested lines ------------------------------

    def delete_payment(self, payment_id: str) -> Any:
        return self.api_delete(f'{self.PAYMENT_PATH}/{payment_id}')

    def delete_schedule(self, schedule_id: str) -> Any:
        return self.api_delete(f'{self.SCHEDULE_PATH}/{schedule_id}')

    def line_deleters(self) -> Dict[str, Any]:
        """Collection name -> delete-by-id callable."""
        return {'payments': self.delete_payment, 'schedules': self.delete_schedule}

    # ----------------------------- Related entities --------------------------

    def lookup(self, resource: str) -> 'ResourceLookup':
        return ResourceLookup(self, resource)


class ResourceLookup:
    """``list(filter)`` / ``get(id)`` over one admin resource (e.g. ``document-type``)."""

    def __init__(self, api: OrderApi, resource: str, per_page: int = 20):
        self.api = api
        self.resource = resource
        self.per_page = per_page

    def list(self, filters: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {'per_page': self.per_page}
        for key, value in (filters or {}).items():
            params[f'filters[{key}]'] = value
        return normalize_list_response(self.api.api_get(f'{OrderApi.ADMIN_PATH}/{self.resource}', params=params))

    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        try:
            body = self.api.api_get(f'{OrderApi.ADMIN_PATH}/{self.resource}/{entity_id}')
        except ApiError as e:
            if e.status == 404:
                return None
            raise
        if isinstance(body, dict) and isinstance(body.get('data'), dict):
            return body['data']
        return body
