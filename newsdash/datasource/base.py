"""
Base data source interface.
"""

from abc import ABC
from typing import Any

from pydantic import TypeAdapter, ValidationError

from newsdash.models import ApiEnvelope
from newsdash.services.client import ApiClient
from newsdash.services.errors import ErrorKind, TransportError


class BaseDataSource(ABC):
    """
    Abstract base class for all API data sources.

    All data sources should:
    - Use ApiClient for HTTP requests (errors arrive already normalized)
    - Return Pydantic models
    - Leave caching to the CacheStore
    """

    def __init__(self, client: ApiClient):
        self.client = client

    @property
    def service_id(self) -> str:
        return self.client.SERVICE_ID

    def _parse(self, envelope: ApiEnvelope[Any], schema: Any) -> Any:
        """Validate ``envelope.data`` against ``schema``."""
        try:
            return TypeAdapter(schema).validate_python(envelope.data)
        except ValidationError as e:
            raise TransportError.build(
                ErrorKind.INVALID_RESPONSE,
                f"Unexpected payload shape: {e.error_count()} validation errors",
                service_id=self.service_id,
                request_id=envelope.request_id,
            ) from e

    async def _get(
        self, path: str, schema: Any, params: dict[str, Any] | None = None
    ) -> Any:
        envelope = await self.client.request(path, params=params)
        return self._parse(envelope, schema)

    async def _post(
        self, path: str, schema: Any, json_data: Any = None
    ) -> Any:
        envelope = await self.client.request(path, method="POST", json_data=json_data)
        return self._parse(envelope, schema)
