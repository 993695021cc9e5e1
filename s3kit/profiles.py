from __future__ import annotations
"""Saved connection profiles that resolve to a :class:`ClientConfig`."""
from dataclasses import dataclass
import json
import logging
from pathlib import Path

import keyring
from keyring.errors import KeyringError

from .config import DEFAULT_MAX_RETRIES, DEFAULT_REGION, ClientConfig, resolve_config

LOGGER = logging.getLogger(__name__)


@dataclass
class ConnectionProfile:
    """Represents a saved S3-compatible endpoint and its credentials."""

    name: str
    endpoint_url: str
    access_key: str
    secret_key: str
    region: str = DEFAULT_REGION
    path_style: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES

    def to_client_config(self) -> ClientConfig:
        return resolve_config(
            endpoint_url=self.endpoint_url,
            access_key=self.access_key,
            secret_key=self.secret_key,
            region=self.region,
            path_style=self.path_style,
            max_retries=self.max_retries,
        )


class KeychainStore:
    """Encapsulates OS keychain access for secrets."""

    def __init__(self, service_name: str = "pys3kit"):
        self._service_name = service_name

    def get_secret(self, profile_name: str) -> str:
        if not profile_name:
            return ""
        try:
            return keyring.get_password(self._service_name, profile_name) or ""
        except KeyringError:
            LOGGER.warning("Unable to read secret for profile '%s' from the keychain", profile_name)
            return ""

    def set_secret(self, profile_name: str, secret_key: str) -> None:
        if not profile_name:
            return
        if not secret_key:
            self.delete_secret(profile_name)
            return
        try:
            keyring.set_password(self._service_name, profile_name, secret_key)
        except KeyringError:
            LOGGER.warning("Unable to store secret for profile '%s' in the keychain", profile_name)

    def delete_secret(self, profile_name: str) -> None:
        if not profile_name:
            return
        try:
            keyring.delete_password(self._service_name, profile_name)
        except KeyringError:
            return


class ProfileStorage:
    """JSON-backed store for connection profiles; secrets go to the keychain."""

    def __init__(self, storage_path: str | Path | None = None, keychain: KeychainStore | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3kit_profiles.json"
        self._path = Path(storage_path)
        self._keychain = keychain or KeychainStore()

    def load(self) -> list[ConnectionProfile]:
        data = self._read_data()
        profiles: list[ConnectionProfile] = []
        sanitized: list[dict[str, object]] = []
        saw_plaintext = False
        for entry in data:
            try:
                name = entry["name"]
                endpoint_url = entry["endpoint_url"]
                access_key = entry["access_key"]
            except (KeyError, TypeError):
                continue
            secret_key = entry.get("secret_key", "")
            if secret_key:
                saw_plaintext = True
                self._keychain.set_secret(name, secret_key)
            else:
                secret_key = self._keychain.get_secret(name)
            profile = ConnectionProfile(
                name=name,
                endpoint_url=endpoint_url,
                access_key=access_key,
                secret_key=secret_key,
                region=entry.get("region") or DEFAULT_REGION,
                path_style=bool(entry.get("path_style", True)),
                max_retries=_coerce_retries(entry.get("max_retries")),
            )
            profiles.append(profile)
            sanitized.append(self._serialize(profile))
        if saw_plaintext:
            LOGGER.info("Moved plaintext secrets from %s into the keychain", self._path)
            self._write_data(sanitized)
        return profiles

    def get(self, name: str) -> ConnectionProfile:
        for profile in self.load():
            if profile.name == name:
                return profile
        raise ValueError(f"Profile '{name}' does not exist")

    def save(self, profiles: list[ConnectionProfile]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = []
        for profile in profiles:
            self._keychain.set_secret(profile.name, profile.secret_key)
            data.append(self._serialize(profile))
        existing_names = {entry.get("name") for entry in self._read_data() if isinstance(entry, dict)}
        current_names = {profile.name for profile in profiles}
        for name in existing_names - current_names:
            if isinstance(name, str) and name:
                self._keychain.delete_secret(name)
        self._write_data(data)

    @staticmethod
    def _serialize(profile: ConnectionProfile) -> dict[str, object]:
        return {
            "name": profile.name,
            "endpoint_url": profile.endpoint_url,
            "access_key": profile.access_key,
            "region": profile.region,
            "path_style": profile.path_style,
            "max_retries": profile.max_retries,
        }

    def _read_data(self) -> list:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable profile file %s", self._path)
            return []
        return data if isinstance(data, list) else []

    def _write_data(self, data: list[dict[str, object]]) -> None:
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _coerce_retries(value: object) -> int:
    try:
        retries = int(value)
    except (TypeError, ValueError):
        return DEFAULT_MAX_RETRIES
    return retries if retries >= 0 else DEFAULT_MAX_RETRIES
