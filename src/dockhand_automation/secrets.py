from __future__ import annotations

import base64
import json
import threading
from typing import Any, Optional

try:  # pragma: no cover
    import boto3  # type: ignore
except Exception:  # pragma: no cover
    boto3 = None

from .errors import ConfigurationError


class SecretResolver:
    """Resolves ``{aws_secret = "...", key = "..."}`` references in variable mappings."""

    def __init__(self, region: Optional[str] = None):
        self.region = region
        self._cache: dict[tuple[str, Optional[str]], Any] = {}
        self._lock = threading.Lock()
        self._client = None

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: self._resolve_value(v) for k, v in values.items()}

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            if "aws_secret" in value:
                return self._resolve_aws_secret(value)
            return {k: self._resolve_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(v) for v in value]
        return value

    def _resolve_aws_secret(self, spec: dict[str, Any]) -> Any:
        name = str(spec["aws_secret"])
        key = spec.get("key")
        cache_key = (name, key if key is None else str(key))
        with self._lock:
            if cache_key in self._cache:
                return self._cache[cache_key]
            response = self._secrets_client().get_secret_value(SecretId=name)

        secret_str = response.get("SecretString")
        if secret_str is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise ConfigurationError(f"Secret {name} has no SecretString or SecretBinary")
            secret_str = base64.b64decode(binary).decode()

        value: Any = secret_str
        if key is not None:
            try:
                payload = json.loads(secret_str)
            except json.JSONDecodeError:
                # Plain-text secrets have no keys; the whole string is the value.
                payload = None
            if isinstance(payload, dict):
                if str(key) not in payload:
                    raise ConfigurationError(f"Secret {name} has no key '{key}'")
                value = payload[str(key)]

        with self._lock:
            self._cache[cache_key] = value
        return value

    def _secrets_client(self):
        if boto3 is None:
            raise ConfigurationError("boto3 is required to resolve aws_secret references")
        if self._client is None:
            if self.region:
                self._client = boto3.client("secretsmanager", region_name=self.region)
            else:
                self._client = boto3.client("secretsmanager")
        return self._client
