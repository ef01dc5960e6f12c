"""QuickBooks Online accounting API client.

Wraps the REST API at ``/v3/company/<realm_id>``: CRUD operations and ad-hoc
queries for the record types listed in :mod:`qbo_accounting.entities`, plus
reports and PDF downloads.

Usage::

    client = AccountingClient(ClientConfig(access_token="...", realm_id="123"))
    client.find("Customer", {"DisplayName": "Acme"})
    client.find_invoices([{"field": "Balance", "value": 0, "operator": ">"}], {"fetchAll": True})
    client.update_customer({"Id": "1", "SyncToken": "0", "DisplayName": "Acme Ltd"})
"""

from __future__ import annotations

import copy
import functools
import os
import posixpath
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import requests

from qbo_accounting import entities
from qbo_accounting.entities import EntitySpec
from qbo_accounting.errors import ConfigError, PreconditionError
from qbo_accounting.query import execute_query, normalize_filters

__version__ = "1.0.0"

BASE_URL_PRODUCTION = "https://quickbooks.api.intuit.com"
BASE_URL_SANDBOX = "https://sandbox-quickbooks.api.intuit.com"
API_PREFIX = "/v3/company"
DEFAULT_MINOR_VERSION = 65
MAX_MINOR_VERSION = 65
USER_AGENT = f"qbo-accounting: version {__version__}"

_NO_BODY_METHODS = ("GET", "HEAD")


def _default_use_sandbox() -> bool:
    return os.environ.get("QBO_ENVIRONMENT", "").lower() != "production"


@dataclass
class ClientConfig:
    access_token: str
    realm_id: str
    minor_version: int = DEFAULT_MINOR_VERSION
    use_sandbox: bool = field(default_factory=_default_use_sandbox)
    debug: bool = False
    request_timeout: float = 60.0
    max_pages: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ConfigError("access_token not defined")
        if not self.realm_id:
            raise ConfigError("realm_id not defined")
        if not isinstance(self.access_token, str):
            raise ConfigError("invalid value: access_token")
        if not isinstance(self.realm_id, str):
            raise ConfigError("invalid value: realm_id")
        if (
            isinstance(self.minor_version, bool)
            or not isinstance(self.minor_version, int)
            or not 0 <= self.minor_version <= MAX_MINOR_VERSION
        ):
            raise ConfigError("invalid value: minor_version")
        if not isinstance(self.use_sandbox, bool):
            raise ConfigError("invalid value: use_sandbox")
        if not isinstance(self.debug, bool):
            raise ConfigError("invalid value: debug")
        if (
            isinstance(self.request_timeout, bool)
            or not isinstance(self.request_timeout, (int, float))
            or self.request_timeout <= 0
        ):
            raise ConfigError("invalid value: request_timeout")
        if self.max_pages is not None and (
            isinstance(self.max_pages, bool) or not isinstance(self.max_pages, int) or self.max_pages < 1
        ):
            raise ConfigError("invalid value: max_pages")

    @property
    def base_url(self) -> str:
        return BASE_URL_SANDBOX if self.use_sandbox else BASE_URL_PRODUCTION


def prepare_update(spec: EntitySpec, payload: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Return the body and query parameters an update of ``payload`` sends.

    Raises ``PreconditionError`` when ``Id``/``SyncToken`` are missing or a
    void is requested for an entity that cannot be voided.
    """
    record = copy.deepcopy(dict(payload))
    if spec.requires_sync_token and (not record.get("Id") or not record.get("SyncToken")):
        raise PreconditionError(f"{spec.name} must contain Id and SyncToken fields: {record!r}")

    params = {"operation": "update"}
    if record.get("sparse") is None:
        record["sparse"] = True
    if record.pop("void", None) is True:
        if spec.void_mode is None:
            raise PreconditionError(f"{spec.name} cannot be voided")
        if spec.void_mode == entities.VOID_OPERATION:
            params["operation"] = "void"
        else:
            params["include"] = "void"
    return record, params


class RequestsTransport:
    """Sends requests with a shared ``requests.Session``.

    Non-2xx responses raise ``requests.HTTPError`` with the response attached.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        params: Dict[str, Any],
        json_body: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        resp = self.session.request(method, url, params=params, json=json_body, headers=headers, timeout=timeout)
        resp.raise_for_status()
        return resp


class AccountingClient:
    def __init__(self, config: ClientConfig, transport: Optional[RequestsTransport] = None):
        if not isinstance(config, ClientConfig):
            raise ConfigError("config must be a ClientConfig")
        self.config = config
        self.transport = transport or RequestsTransport()

    @property
    def access_token(self) -> str:
        return self.config.access_token

    @access_token.setter
    def access_token(self, token: str) -> None:
        if not token or not isinstance(token, str):
            raise ConfigError("invalid value: access_token")
        self.config.access_token = token

    def request(
        self,
        path: str,
        method: str = "GET",
        *,
        headers: Optional[Dict[str, Optional[str]]] = None,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Any] = None,
    ) -> Union[Dict[str, Any], bytes]:
        """Send one request below ``/v3/company/<realm_id>`` and decode the reply.

        Paths ending in ``pdf`` are fetched as ``application/pdf`` and returned
        as bytes; everything else is decoded as JSON.
        """
        method = method.upper()
        url = self.config.base_url + posixpath.join(API_PREFIX, self.config.realm_id, path.lstrip("/"))
        binary = path.endswith("pdf")

        req_params: Dict[str, Any] = {"minorversion": self.config.minor_version}
        req_params.update(params or {})

        default_headers: Dict[str, Optional[str]] = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Accept": "application/pdf" if binary else "application/json",
            "User-Agent": USER_AGENT,
        }
        if method not in _NO_BODY_METHODS:
            default_headers["Content-Type"] = "application/json"
        req_headers = {k: v for k, v in {**default_headers, **(headers or {})}.items() if v is not None}

        body = copy.deepcopy(payload)
        if isinstance(body, dict):
            if body.pop("allowDuplicateDocNum", None):
                req_params["include"] = "allowduplicatedocnum"
            request_id = body.pop("requestId", None)
            if request_id:
                req_params.setdefault("requestid", request_id)

        if self.config.debug:
            print(
                f"HTTP {method} {url} params={req_params} body_present={body is not None} "
                f"timeout={self.config.request_timeout}",
                file=sys.stderr,
            )
        resp = self.transport.send(
            method,
            url,
            headers=req_headers,
            params=req_params,
            json_body=body,
            timeout=self.config.request_timeout,
        )
        if self.config.debug:
            print(f"HTTP {resp.status_code} {url} content-type={resp.headers.get('Content-Type')}", file=sys.stderr)

        if binary:
            return resp.content
        return resp.json()

    @staticmethod
    def _unwrap(spec: EntitySpec, response: Any) -> Any:
        if isinstance(response, dict) and response.get(spec.name):
            return response[spec.name]
        return response

    def create(self, entity: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        spec = entities.resolve_entity(entity, entities.CREATE)
        response = self.request(f"/{spec.path}", "POST", payload=dict(payload))
        return self._unwrap(spec, response)

    def get(self, entity: str, entity_id: Union[str, int]) -> Dict[str, Any]:
        spec = entities.resolve_entity(entity, entities.GET)
        response = self.request(f"/{spec.path}/{entity_id}")
        return self._unwrap(spec, response)

    def update(self, entity: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Update a record; sparse (partial) unless ``sparse`` is given.

        ``void=True`` voids the record instead, for entities with a void mode.
        """
        spec = entities.resolve_entity(entity, entities.UPDATE)
        record, params = prepare_update(spec, payload)
        response = self.request(f"/{spec.path}", "POST", params=params, payload=record)
        return self._unwrap(spec, response)

    def delete(self, entity: str, id_or_record: Union[str, int, Mapping[str, Any]]) -> Dict[str, Any]:
        spec = entities.resolve_entity(entity, entities.DELETE)
        if isinstance(id_or_record, Mapping):
            record = dict(id_or_record)
        else:
            record = self.get(spec.name, id_or_record)
            if not isinstance(record, dict):
                raise PreconditionError(f"{spec.name} {id_or_record} could not be read for deletion")
        return self.request(f"/{spec.path}", "POST", params={"operation": "delete"}, payload=record)

    def find(
        self,
        entity: str,
        filters: Any = None,
        options: Optional[Mapping[str, Any]] = None,
        *,
        max_pages: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Query ``entity`` records.

        ``filters`` is a mapping of field to value or a list of
        ``{"field", "value", "operator"}`` records. ``options`` holds extra
        control fields such as ``{"fetchAll": True}`` or ``{"asc": "Name"}``.
        """
        spec = entities.resolve_entity(entity, entities.FIND)
        clauses = normalize_filters(filters) + normalize_filters(options)
        if max_pages is None:
            max_pages = self.config.max_pages
        return execute_query(self._run_query, spec.name, clauses, max_pages=max_pages)

    def count(self, entity: str, filters: Any = None) -> int:
        response = self.find(entity, filters, {"count": True})
        return int((response.get("QueryResponse") or {}).get("totalCount") or 0)

    def _run_query(self, query_text: str) -> Dict[str, Any]:
        return self.request("/query", params={"query": query_text})

    def report(self, report_type: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        name = entities.resolve_report(report_type)
        return self.request(posixpath.join("/reports", name), params=dict(params or {}))

    def get_pdf(self, entity: str, entity_id: Union[str, int]) -> bytes:
        spec = entities.resolve_entity(entity)
        if not spec.has_pdf:
            raise PreconditionError(f"{spec.name} has no PDF rendering")
        return self.request(f"/{spec.path}/{entity_id}/pdf")

    def __getattr__(self, name: str) -> Callable[..., Any]:
        # find_invoices, get_customer, report_balance_sheet, ...
        verb, _, rest = name.partition("_")
        if not rest or verb not in entities.VERBS + ("report",):
            raise AttributeError(name)
        if verb == "report":
            try:
                return functools.partial(self.report, entities.resolve_report(rest))
            except PreconditionError:
                raise AttributeError(name) from None
        if verb == entities.FIND:
            spec = entities.resolve_plural(rest)
        else:
            try:
                spec = entities.resolve_entity(rest)
            except PreconditionError:
                spec = None
        if spec is None or not spec.supports(verb):
            raise AttributeError(name)
        return functools.partial(getattr(self, verb), spec.name)
