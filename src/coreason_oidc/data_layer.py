# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

"""
Data layer persisting configuration, provider metadata, session and temporary data of an authentication context.
"""

import json
import uuid
from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import SecretStr

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.exceptions import ConfigurationError
from coreason_oidc.models import OIDCProviderMetadata, SessionData


class Store(Protocol):
    """Protocol for the key-value store backing a DataLayer."""

    async def get_data(self, key: str) -> str | None: ...

    async def set_data(self, key: str, value: str) -> None: ...

    async def remove_data(self, key: str) -> None: ...


class MemoryStore:
    """
    In-memory implementation of Store.
    Data lives as long as the process. Not suitable for distributed systems.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get_data(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_data(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_data(self, key: str) -> None:
        self._data.pop(key, None)


class Stores:
    CONFIG_DATA = "config_data"
    OIDC_PROVIDER_META_DATA = "oidc_provider_meta_data"
    SESSION_DATA = "session_data"
    TEMPORARY_DATA = "temporary_data"


def _serialize_config(data: Mapping[str, Any]) -> dict[str, Any]:
    serialized = dict(data)
    secret = serialized.get("client_secret")
    if isinstance(secret, SecretStr):
        serialized["client_secret"] = secret.get_secret_value()
    endpoints = serialized.get("endpoints")
    if isinstance(endpoints, OIDCProviderMetadata):
        serialized["endpoints"] = endpoints.model_dump(exclude_none=True)
    return serialized


class DataLayer:
    """
    Persists the state of one authentication context.

    Every record is keyed by the instance id, so several contexts can share one store.

    Attributes:
        instance_id (str): Opaque identity of the authentication context.
        store (Store): The backing key-value store.
    """

    def __init__(self, store: Store | None = None, instance_id: str | None = None) -> None:
        self.store: Store = store or MemoryStore()
        self.instance_id = instance_id or uuid.uuid4().hex

    def _key(self, name: str) -> str:
        return f"{name}-{self.instance_id}"

    async def _get_record(self, name: str) -> dict[str, Any]:
        raw = await self.store.get_data(self._key(name))
        if not raw:
            return {}
        record = json.loads(raw)
        return record if isinstance(record, dict) else {}

    async def _set_record(self, name: str, record: Mapping[str, Any]) -> None:
        await self.store.set_data(self._key(name), json.dumps(dict(record)))

    async def _remove_record(self, name: str) -> None:
        await self.store.remove_data(self._key(name))

    async def get_config_data(self) -> AuthClientConfig:
        """
        Returns the stored configuration.

        Raises:
            ConfigurationError: If the context was never initialized with a configuration.
        """
        record = await self._get_record(Stores.CONFIG_DATA)
        if not record:
            raise ConfigurationError(f"No configuration stored for authentication context '{self.instance_id}'.")
        return AuthClientConfig(**record)

    async def set_config_data(self, config: AuthClientConfig | Mapping[str, Any]) -> AuthClientConfig:
        """
        Merges a full or partial configuration into the stored one.

        The merged configuration is validated before it is written, so an invalid update leaves the stored one intact.

        Returns:
            AuthClientConfig: The configuration now in effect.
        """
        if isinstance(config, AuthClientConfig):
            partial = config.model_dump(exclude_unset=True)
        else:
            partial = dict(config)

        merged = {**await self._get_record(Stores.CONFIG_DATA), **_serialize_config(partial)}
        validated = AuthClientConfig(**merged)
        await self._set_record(Stores.CONFIG_DATA, merged)
        return validated

    async def get_oidc_provider_metadata(self) -> OIDCProviderMetadata:
        return OIDCProviderMetadata(**await self._get_record(Stores.OIDC_PROVIDER_META_DATA))

    async def set_oidc_provider_metadata(self, metadata: OIDCProviderMetadata) -> None:
        await self._set_record(Stores.OIDC_PROVIDER_META_DATA, metadata.model_dump(exclude_none=True))

    async def get_oidc_provider_metadata_parameter(self, name: str) -> Any:
        return (await self._get_record(Stores.OIDC_PROVIDER_META_DATA)).get(name)

    async def get_session_data(self) -> SessionData:
        return SessionData(**await self._get_record(Stores.SESSION_DATA))

    async def set_session_data(self, data: Mapping[str, Any]) -> SessionData:
        """Merges the given fields into the stored session and returns the result."""
        merged = {**await self._get_record(Stores.SESSION_DATA), **dict(data)}
        session = SessionData(**merged)
        await self._set_record(Stores.SESSION_DATA, merged)
        return session

    async def set_session_data_parameter(self, key: str, value: Any) -> None:
        await self.set_session_data({key: value})

    async def remove_session_data(self) -> None:
        await self._remove_record(Stores.SESSION_DATA)

    async def get_temporary_data_parameter(self, key: str) -> Any:
        return (await self._get_record(Stores.TEMPORARY_DATA)).get(key)

    async def set_temporary_data_parameter(self, key: str, value: Any) -> None:
        record = await self._get_record(Stores.TEMPORARY_DATA)
        record[key] = value
        await self._set_record(Stores.TEMPORARY_DATA, record)

    async def remove_temporary_data_parameter(self, key: str) -> None:
        record = await self._get_record(Stores.TEMPORARY_DATA)
        if key in record:
            del record[key]
            await self._set_record(Stores.TEMPORARY_DATA, record)
